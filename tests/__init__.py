"""
Revive Test Suite

Tests for:
- Billing cycle arithmetic and the usage ledger
- Subscription webhook reconciliation and the billing client
- Generation providers (mock and Replicate)
- Job tracking, failure classification and the job store
- HTTP API and command line

Run tests with:
    pytest tests/ -v
"""
