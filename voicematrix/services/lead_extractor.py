"""Lead extraction from the provider's post-call structured analysis.

The analysis map is free-form and produced by an LLM, so each field is
mapped explicitly and anything missing or of the wrong type becomes None.
Nothing here raises on bad input.
"""

from dataclasses import asdict, dataclass
from typing import Any, List, Mapping, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from voicematrix.database import upsert_insert
from voicematrix.models.call import CallRecord
from voicematrix.models.lead import Lead, LeadType
from voicematrix.utils.logging import get_logger

logger = get_logger("pipeline.lead_extractor")

LEAD_TYPES = frozenset(t.value for t in LeadType)


@dataclass
class ExtractedLead:
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    lead_type: Optional[str] = None
    property_types: Optional[List[str]] = None
    budget_min: Optional[float] = None
    budget_max: Optional[float] = None
    preferred_locations: Optional[List[str]] = None
    timeline: Optional[str] = None
    notes: Optional[str] = None

    def as_values(self) -> dict:
        return asdict(self)


def _str_or_none(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _number_or_none(value: Any) -> Optional[float]:
    # bool is an int subclass but never a budget.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _str_list_or_none(value: Any) -> Optional[List[str]]:
    if not isinstance(value, list):
        return None
    if not all(isinstance(item, str) for item in value):
        return None
    return list(value)


def _lead_type_or_none(value: Any) -> Optional[str]:
    if isinstance(value, str) and value in LEAD_TYPES:
        return value
    return None


def extract_lead(
    structured_data: Optional[Mapping[str, Any]],
    fallback_phone: Optional[str] = None,
) -> Optional[ExtractedLead]:
    """Map the analysis dict to a lead.

    Returns None only when there is no map at all. An empty map still yields
    a lead so the caller's number is kept on record.
    """
    if not isinstance(structured_data, Mapping):
        return None

    data = structured_data
    return ExtractedLead(
        first_name=_str_or_none(data.get("firstName")),
        last_name=_str_or_none(data.get("lastName")),
        email=_str_or_none(data.get("email")),
        phone=_str_or_none(data.get("phone")) or fallback_phone,
        lead_type=_lead_type_or_none(data.get("leadType")),
        property_types=_str_list_or_none(data.get("propertyType")),
        budget_min=_number_or_none(data.get("budgetMin")),
        budget_max=_number_or_none(data.get("budgetMax")),
        preferred_locations=_str_list_or_none(data.get("location")),
        timeline=_str_or_none(data.get("timeline")),
        notes=_str_or_none(data.get("notes")),
    )


async def save_lead(db: AsyncSession, call: CallRecord, extracted: ExtractedLead) -> Lead:
    """Insert or refresh the lead attached to ``call``."""
    values = extracted.as_values()
    insert_fn = upsert_insert(db)

    if insert_fn is not None:
        stmt = insert_fn(Lead).values(call_record_id=call.id, user_id=call.user_id, **values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Lead.call_record_id],
            set_={
                **{key: getattr(stmt.excluded, key) for key in values},
                "updated_at": func.now(),
            },
        )
        await db.execute(stmt)
    else:
        result = await db.execute(select(Lead).where(Lead.call_record_id == call.id))
        existing = result.scalar_one_or_none()
        if existing is None:
            db.add(Lead(call_record_id=call.id, user_id=call.user_id, **values))
        else:
            for key, value in values.items():
                setattr(existing, key, value)
        await db.flush()

    result = await db.execute(
        select(Lead)
        .where(Lead.call_record_id == call.id)
        .execution_options(populate_existing=True)
    )
    lead = result.scalar_one()
    logger.info(
        "lead_saved",
        call_id=call.external_call_id,
        lead_id=lead.id,
        lead_type=lead.lead_type,
    )
    return lead
