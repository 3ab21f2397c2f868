"""Quota ledger and shared pool recovery."""

from quota_proxy.quota.ledger import QuotaLedger
from quota_proxy.quota.recovery import QuotaRecoveryScheduler, run_quota_recovery


__all__ = ["QuotaLedger", "QuotaRecoveryScheduler", "run_quota_recovery"]
