"""
Data Preprocessing Module for the Judicial Identity Engine.

Turns raw provider records (CourtListener shapes or flat JSON/CSV exports)
into typed court, judge, case and appointment records. Malformed records
raise ``UpstreamDataError``; batch helpers log and skip them.
"""

import logging
import re
from datetime import date
from typing import Optional, Dict, List, Any, Tuple

import pandas as pd

from .errors import UpstreamDataError
from .jurisdiction import STATE_ALIASES
from .models import AppointmentRecord, CaseRecord

logger = logging.getLogger(__name__)


class RecordPreprocessor:
    """
    Converts raw dictionaries into engine records.

    Handles:
    - Court metadata (jurisdiction path derivation, seat counts)
    - Judge profiles (CourtListener ``people`` records)
    - Cases (dockets or flat case exports)
    - Authoritative positions (CourtListener ``positions`` records)
    """

    # CourtListener court jurisdiction codes
    FEDERAL_CODES = {"F", "FD", "FB", "FBP", "FS"}
    STATE_CODES = {"S", "SA", "ST", "SS", "SAG", "TRS"}

    # Alternative field names per target field, first non-empty wins
    CASE_FIELDS = {
        "case_id": ["case_id", "id", "docket_id", "docket_number"],
        "judge_name": ["judge_name", "assigned_to_str", "judge", "judge_full_name"],
        "jurisdiction": ["jurisdiction", "jurisdiction_path", "court_jurisdiction"],
        "decided_on": ["decided_on", "decision_date", "date_terminated", "date_decided"],
        "filed_on": ["filed_on", "filing_date", "date_filed"],
        "outcome": ["outcome", "disposition", "status"],
        "case_type": ["case_type", "nature_of_suit", "cause"],
        "court_id": ["court_id", "court"],
        "external_judge_id": ["external_judge_id", "judge_id", "assigned_to"],
    }

    def __init__(self, court_jurisdictions: Optional[Dict[str, str]] = None):
        """
        Initialize the preprocessor.

        Args:
            court_jurisdictions: Court id -> jurisdiction text, used when a
                case record carries a court id but no jurisdiction.
        """
        self.court_jurisdictions = dict(court_jurisdictions or {})

    # ==================== Field Helpers ====================

    @staticmethod
    def parse_date(value: Any) -> Optional[date]:
        """Parse a date-like value; unparseable or empty values give None."""
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        if isinstance(value, date) and not isinstance(value, pd.Timestamp):
            return value
        parsed = pd.to_datetime(value, errors="coerce")
        if pd.isna(parsed):
            return None
        return parsed.date()

    @staticmethod
    def extract_id(value: Any) -> Optional[str]:
        """
        Identifier from a raw id, nested object or API URL.

        Examples:
            ``"https://www.courtlistener.com/api/rest/v4/courts/cacd/"`` -> ``"cacd"``
        """
        if value is None:
            return None
        if isinstance(value, dict):
            value = value.get("id") or value.get("resource_uri")
            if value is None:
                return None
        if isinstance(value, float):
            if pd.isna(value):
                return None
            value = int(value)
        text = str(value).strip()
        if not text:
            return None
        if text.startswith("http"):
            text = text.rstrip("/").rsplit("/", 1)[-1]
        return text

    def _first(self, raw: Dict[str, Any], names: List[str]) -> Any:
        for name in names:
            value = raw.get(name)
            if value is None:
                continue
            if isinstance(value, str) and not value.strip():
                continue
            if isinstance(value, float) and pd.isna(value):
                continue
            return value
        return None

    # ==================== Courts ====================

    def preprocess_court(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        """
        Normalize a court record.

        Returns:
            Keyword arguments for ``Registry.add_court``.

        Raises:
            UpstreamDataError: If the court has no id or derivable jurisdiction.
        """
        court_id = self.extract_id(raw.get("court_id") or raw.get("id"))
        if not court_id:
            raise UpstreamDataError("Court record without id", record=raw)

        name = raw.get("name") or raw.get("full_name") or raw.get("short_name") or court_id
        jurisdiction = raw.get("jurisdiction_path") or self._court_jurisdiction(court_id, raw)
        if not jurisdiction:
            raise UpstreamDataError(f"Court {court_id} has no jurisdiction", record=raw)

        seats = raw.get("seats")
        try:
            seats = int(seats) if seats not in (None, "") else None
        except (TypeError, ValueError):
            raise UpstreamDataError(f"Court {court_id} has invalid seats {seats!r}", record=raw)

        self.court_jurisdictions[court_id] = jurisdiction
        return {
            "court_id": court_id,
            "name": str(name),
            "jurisdiction": jurisdiction,
            "level": raw.get("level") or None,
            "seats": seats,
        }

    def _court_jurisdiction(self, court_id: str, raw: Dict[str, Any]) -> Optional[str]:
        """Jurisdiction path from a CourtListener court code and name."""
        code = str(raw.get("jurisdiction") or "").upper()
        if "/" in code or ">" in code:
            return raw["jurisdiction"]
        if code in self.FEDERAL_CODES:
            return f"federal/{court_id}"

        name = str(raw.get("full_name") or raw.get("name") or "").lower()
        for state_name in sorted(STATE_ALIASES, key=len, reverse=True):
            if re.search(rf"\b{re.escape(state_name)}\b", name):
                return f"{STATE_ALIASES[state_name]}/{court_id}"
        if code in self.STATE_CODES:
            return None
        return raw.get("jurisdiction") or None

    # ==================== Judges ====================

    def preprocess_judge(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        """
        Normalize a judge (person) record.

        Returns:
            Keyword arguments for ``Registry.add_judge``.

        Raises:
            UpstreamDataError: If the record has no usable name.
        """
        name = raw.get("name") or raw.get("name_full") or " ".join(
            str(raw.get(k) or "").strip()
            for k in ("name_first", "name_middle", "name_last", "name_suffix")
        )
        name = re.sub(r"\s+", " ", str(name)).strip()
        if not name:
            raise UpstreamDataError("Judge record without a name", record=raw)

        return {
            "name": name,
            "external_id": self.extract_id(raw.get("external_id") or raw.get("id")),
            "birth_date": self.parse_date(raw.get("date_dob") or raw.get("birth_date")),
            "appointment_date": self.parse_date(
                raw.get("date_nominated") or raw.get("appointment_date")
            ),
            "multi_court": str(raw.get("multi_court", "")).lower() in ("true", "1", "yes"),
        }

    # ==================== Cases ====================

    def preprocess_case(self, raw: Dict[str, Any]) -> CaseRecord:
        """
        Normalize one case record.

        Raises:
            UpstreamDataError: If id, judge name or decision date is missing.
        """
        values = {field: self._first(raw, names) for field, names in self.CASE_FIELDS.items()}

        case_id = self.extract_id(values["case_id"])
        if not case_id:
            raise UpstreamDataError("Case record without id", record=raw)
        if not values["judge_name"]:
            raise UpstreamDataError(f"Case {case_id} has no judge name", record=raw)

        decided_on = self.parse_date(values["decided_on"])
        if decided_on is None:
            raise UpstreamDataError(f"Case {case_id} has no valid decision date", record=raw)
        filed_on = self.parse_date(values["filed_on"])
        if filed_on and filed_on > decided_on:
            logger.debug("Case %s filed after decision; dropping filing date", case_id)
            filed_on = None

        court_id = self.extract_id(values["court_id"])
        jurisdiction = values["jurisdiction"] or self.court_jurisdictions.get(court_id or "", "")

        return CaseRecord(
            case_id=case_id,
            judge_name=str(values["judge_name"]).strip(),
            jurisdiction=str(jurisdiction or ""),
            decided_on=decided_on,
            outcome=str(values["outcome"] or ""),
            case_type=str(values["case_type"] or ""),
            court_id=court_id,
            external_judge_id=self.extract_id(values["external_judge_id"]),
            filed_on=filed_on,
        )

    # ==================== Positions ====================

    def preprocess_appointment(self, raw: Dict[str, Any]) -> AppointmentRecord:
        """
        Normalize an authoritative position record.

        CourtListener positions carry ``person``, ``court``, ``date_start``
        and ``date_termination``; flat exports may use ``judge_id``,
        ``court_id``, ``start_date``, ``end_date`` and ``kind``.

        Raises:
            UpstreamDataError: If the judge, court or dates are missing.
        """
        kind = str(raw.get("kind") or "appointment").lower()
        if kind not in ("appointment", "end", "transfer"):
            raise UpstreamDataError(f"Unknown position record kind {kind!r}", record=raw)

        court_id = self.extract_id(raw.get("court_id") or raw.get("court"))
        if not court_id:
            raise UpstreamDataError("Position record without court", record=raw)

        judge_id = self.extract_id(raw.get("judge_id"))
        external_id = self.extract_id(raw.get("external_judge_id") or raw.get("person"))
        if not judge_id and not external_id:
            raise UpstreamDataError("Position record without judge", record=raw)

        start = self.parse_date(raw.get("start_date") or raw.get("date_start"))
        end = self.parse_date(
            raw.get("end_date") or raw.get("date_termination") or raw.get("date_retirement")
        )
        if kind == "appointment" and start is None:
            raise UpstreamDataError("Appointment without start date", record=raw)
        if kind != "appointment" and end is None and start is None:
            raise UpstreamDataError(f"{kind} record without a date", record=raw)

        return AppointmentRecord(
            court_id=court_id,
            start_date=start,
            judge_id=judge_id,
            external_judge_id=external_id,
            judge_name=raw.get("judge_name"),
            end_date=end,
            kind=kind,
        )

    # ==================== Batches ====================

    @staticmethod
    def record_kind(raw: Dict[str, Any]) -> str:
        """Guess the type of a raw record: court, judge, position or case."""
        explicit = raw.get("record_type")
        if explicit:
            return str(explicit).lower()
        if any(k in raw for k in ("date_start", "start_date", "kind", "date_termination")):
            return "position"
        if any(k in raw for k in ("judge_name", "assigned_to_str", "decided_on", "decision_date")):
            return "case"
        if any(k in raw for k in ("name_last", "name_first", "date_dob")):
            return "judge"
        if any(k in raw for k in ("full_name", "jurisdiction_path", "seats")):
            return "court"
        return "unknown"

    def preprocess_cases(
        self, records: List[Dict[str, Any]]
    ) -> Tuple[List[CaseRecord], List[UpstreamDataError]]:
        """Normalize many case records, collecting rejects."""
        cases, errors = [], []
        for raw in records:
            try:
                cases.append(self.preprocess_case(raw))
            except UpstreamDataError as e:
                logger.warning("Skipping malformed case: %s", e)
                errors.append(e)
        logger.info("Preprocessed %d cases (%d rejected)", len(cases), len(errors))
        return cases, errors

    @staticmethod
    def cases_to_frame(cases: List[CaseRecord]) -> pd.DataFrame:
        """Case records as a DataFrame (one row per case)."""
        columns = [
            "case_id", "judge_name", "jurisdiction", "decided_on", "outcome",
            "case_type", "court_id", "external_judge_id", "filed_on",
        ]
        return pd.DataFrame([vars(c) for c in cases], columns=columns)
