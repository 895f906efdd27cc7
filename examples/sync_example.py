#!/usr/bin/env python3
"""
Example usage of the ELD integration hub.

Runs one scheduling sweep over every active connection that is due, then
prints the current-quarter jurisdiction mileage for one owner.

    python examples/sync_example.py <owner_id>
"""

import logging
import sys

import pandas as pd

from eld_integration_hub import ELDHub
from eld_integration_hub.common.quarters import quarter_for_date

logger = logging.getLogger(__name__)


def main() -> None:
    """Run a scheduled sync and show the reconciled IFTA mileage."""
    if len(sys.argv) != 2:  # noqa: PLR2004
        print('usage: sync_example.py <owner_id>')
        sys.exit(1)
    owner_id: str = sys.argv[1]

    logger.info('Loading configuration...')
    hub = ELDHub.from_config('config/eld_hub.yaml')

    try:
        sweep = hub.orchestrator.run_scheduled_sync()
        if sweep.error or sweep.data is None:
            logger.error('Scheduled sync failed: %s', sweep.error_message)
            return

        for run in sweep.data.runs:
            logger.info(
                'Connection %s: %d records over %d passes%s',
                run.connection_id,
                run.total_records,
                len(run.passes),
                ' (rate limited)' if run.rate_limited else '',
            )
        for connection_id, message in sweep.data.failures.items():
            logger.warning('Connection %s: %s', connection_id, message)

        quarter = quarter_for_date(pd.Timestamp.now(tz='UTC').date())
        report = hub.reconciliation.get_jurisdiction_mileage(owner_id, quarter)
        if report.error or report.data is None:
            logger.error('Reconciliation failed: %s', report.error_message)
            return

        logger.info('Mileage for %s (%s mode)', quarter, report.data.mode)
        if report.data.fallback:
            logger.warning('Fell back: %s', report.data.fallback_reason)
        print(report.data.to_dataframe())
    finally:
        hub.close()


if __name__ == '__main__':
    main()
