# eld_integration_hub/common/truststore_context.py
"""
SSL context backed by the operating system trust store.

Fleet back offices frequently sit behind TLS-inspecting proxies whose root
CA lives only in the OS store. When `http.use_truststore` is enabled the
provider clients verify against that store instead of certifi's bundle.

`truststore` is an optional extra (`pip install eld-integration-hub[truststore]`);
it is imported only when this factory is called.
"""

import ssl
from ssl import SSLContext

__all__: list[str] = ['build_truststore_ssl_context']


def build_truststore_ssl_context() -> SSLContext:
    """
    Create a client SSLContext that validates against the OS trust store.

    Returns:
        SSLContext using PROTOCOL_TLS_CLIENT.

    Raises:
        RuntimeError: If truststore is not installed.
    """
    try:
        import truststore  # noqa: PLC0415
    except ImportError as import_error:
        raise RuntimeError(
            'truststore is required when http.use_truststore is enabled; '
            'install it with: pip install truststore'
        ) from import_error

    return truststore.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
