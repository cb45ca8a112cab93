from datetime import date

import pytest

from judicial_analytics.errors import MalformedRecordError
from judicial_analytics.types import (
    AdmissionStatus,
    AnalyticsResult,
    CaseCategory,
    CaseRecord,
    MotionOutcome,
    Outcome,
    normalize_category,
    normalize_motion_outcome,
    normalize_outcome,
)


class TestNormalization:
    @pytest.mark.parametrize("text,expected", [
        ("Civil", CaseCategory.CIVIL),
        ("Personal Injury - Tort", CaseCategory.CIVIL),
        ("Breach of Contract", CaseCategory.CIVIL),
        ("Felony DUI", CaseCategory.CRIMINAL),
        ("Child Custody", CaseCategory.FAMILY),
        ("Dissolution of Marriage", CaseCategory.FAMILY),
        ("Estate of Smith", CaseCategory.PROBATE),
        ("Guardianship", CaseCategory.PROBATE),
        ("Traffic appeal", CaseCategory.OTHER),
        ("", CaseCategory.OTHER),
        (None, CaseCategory.OTHER),
    ])
    def test_category(self, text, expected):
        assert normalize_category(text) == expected

    @pytest.mark.parametrize("text,expected", [
        ("settled", Outcome.SETTLED),
        ("Settlement reached", Outcome.SETTLED),
        ("Dismissed with prejudice", Outcome.DISMISSED),
        ("Judgment for plaintiff", Outcome.JUDGMENT),
        ("Not guilty", Outcome.ACQUITTED),
        ("Found guilty", Outcome.CONVICTED),
        ("Pleaded guilty", Outcome.PLEA),
        ("Something unusual", Outcome.OTHER),
    ])
    def test_outcome(self, text, expected):
        assert normalize_outcome(text) == expected

    def test_blank_outcome_is_none(self):
        assert normalize_outcome("  ") is None

    @pytest.mark.parametrize("text,expected", [
        ("granted", MotionOutcome.GRANTED),
        ("Granted in part, denied in part", MotionOutcome.PARTIAL),
        ("Denied", MotionOutcome.DENIED),
        ("Moot", MotionOutcome.MOOT),
        ("continued", None),
    ])
    def test_motion_outcome(self, text, expected):
        assert normalize_motion_outcome(text) == expected


class TestCaseRecord:
    def test_from_dict_accepts_gateway_columns(self):
        record = CaseRecord.from_dict({
            "id": "c1",
            "judge_id": "j1",
            "case_type": "contract dispute",
            "status": "Settled",
            "filing_date": "2023-01-10",
            "decision_date": "2023-07-10T00:00:00Z",
            "case_value": "125000",
        })
        assert record.category == CaseCategory.CIVIL
        assert record.outcome == Outcome.SETTLED
        assert record.decision_date == date(2023, 7, 10)
        assert record.monetary_value == 125000.0
        assert record.days_to_decision == 181
        assert record.is_decided

    def test_undecided_record_has_no_outcome(self):
        record = CaseRecord.from_dict({"id": "c1", "judge_id": "j1", "case_type": "civil", "status": "pending"})
        assert not record.is_decided
        assert record.outcome is None

    def test_negative_span_has_no_duration(self):
        record = CaseRecord.from_dict({
            "id": "c1", "judge_id": "j1", "case_type": "civil", "outcome": "settled",
            "filing_date": "2023-05-01", "decision_date": "2023-04-01",
        })
        assert record.days_to_decision is None

    @pytest.mark.parametrize("row", [
        {"judge_id": "j1", "outcome": "settled", "decision_date": "2023-01-01"},
        {"id": "c1", "outcome": "settled", "decision_date": "2023-01-01"},
        {"id": "c1", "judge_id": "j1", "outcome": "settled", "decision_date": "not-a-date"},
        {"id": "c1", "judge_id": "j1", "decision_date": "2023-01-01"},
        {"id": "c1", "judge_id": "j1", "case_type": "felony", "outcome": "settled", "decision_date": "2023-01-01"},
    ])
    def test_invalid_rows_raise(self, row):
        with pytest.raises(MalformedRecordError):
            CaseRecord.from_dict(row)

    def test_malformed_error_carries_record_id(self):
        with pytest.raises(MalformedRecordError) as exc:
            CaseRecord.from_dict({"id": "bad-1", "judge_id": "j1", "decision_date": "2023-01-01"})
        assert exc.value.record_id == "bad-1"


class TestAnalyticsResult:
    def test_withheld_result_exposes_only_total(self, make_service):
        from tests.conftest import FakeGateway, make_rows, to_records
        from judicial_analytics.services.case_gateway import CaseLoad

        service = make_service(FakeGateway())
        result = service.compute("j1", CaseLoad(records=to_records(make_rows(40))))

        assert result.status == AdmissionStatus.WITHHELD
        assert result.metric_values() == {"overall.total_decided": 40}

    def test_serialization_round_trip(self, make_service):
        from tests.conftest import FakeGateway, admitted_rows, to_records
        from judicial_analytics.services.case_gateway import CaseLoad

        service = make_service(FakeGateway())
        result = service.compute("judge-1", CaseLoad(records=to_records(admitted_rows())))

        restored = AnalyticsResult.from_dict(result.to_dict())

        assert restored == result

    def test_value_analysis_keys_and_round_trip(self, make_service):
        from tests.conftest import FakeGateway, admitted_rows, to_records
        from judicial_analytics.services.case_gateway import CaseLoad

        rows = admitted_rows()
        for i, row in enumerate(rows):
            if row["case_type"] == "civil":
                row["case_value"] = 600_000 if i % 2 else 20_000
        service = make_service(FakeGateway())
        result = service.compute("judge-1", CaseLoad(records=to_records(rows)))
        values = result.metric_values()

        assert values["civil.valued_sample_size"] == 300
        assert "civil.high_value_settlement_rate" in values
        assert "civil.low_value_settlement_rate" in values
        assert not any(k.startswith("criminal.valued") for k in values)
        assert AnalyticsResult.from_dict(result.to_dict()) == result
