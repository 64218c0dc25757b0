"""Integration tests for database models."""

import pytest

pytestmark = pytest.mark.integration


class TestDatabase:
    def test_models_importable(self):
        from riskgate.db.models import (
            FraudDecisionDB,
            MerchantFraudSettingsDB,
            RefundDB,
            ReviewCaseDB,
            TransactionDB,
            VelocityCounterDB,
        )

        assert TransactionDB.__tablename__ == "transactions"
        assert RefundDB.__tablename__ == "refunds"
        assert VelocityCounterDB.__tablename__ == "velocity_counters"
        assert ReviewCaseDB.__tablename__ == "review_cases"
        assert FraudDecisionDB.__tablename__ == "fraud_decisions"
        assert MerchantFraudSettingsDB.__tablename__ == "merchant_fraud_settings"

    def test_transaction_model_fields(self):
        from riskgate.db.models import TransactionDB

        columns = {c.name for c in TransactionDB.__table__.columns}
        assert {"reference", "amount", "refunded_amount", "chargeback_amount"} <= columns
        assert {"status", "held_for_review", "fraud_score", "version"} <= columns

    def test_transaction_fields_match_domain_model(self):
        from riskgate.db.models import TransactionDB
        from riskgate.domains.payments.models import Transaction

        columns = {c.name for c in TransactionDB.__table__.columns}
        assert set(Transaction.model_fields) <= columns

    def test_refund_fields_match_domain_model(self):
        from riskgate.db.models import RefundDB
        from riskgate.domains.payments.models import Refund

        columns = {c.name for c in RefundDB.__table__.columns}
        assert set(Refund.model_fields) <= columns

    def test_review_case_fields_match_domain_model(self):
        from riskgate.db.models import ReviewCaseDB
        from riskgate.domains.fraud.models import ReviewCase

        columns = {c.name for c in ReviewCaseDB.__table__.columns}
        assert set(ReviewCase.model_fields) <= columns

    def test_reference_is_unique(self):
        from riskgate.db.models import TransactionDB

        assert TransactionDB.__table__.c.reference.unique
