"""Engineer records and their weekly working hours."""

from datetime import date
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from studio_booking.errors import DocumentShapeError
from studio_booking.scheduling.intervals import TimeInterval

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class HoursWindow(BaseModel):
    """Working hours for one weekday, as ``HH:MM`` strings."""
    start: str
    end: str

    @model_validator(mode="after")
    def _check_interval(self) -> "HoursWindow":
        TimeInterval.from_hhmm(self.start, self.end)
        return self

    def to_interval(self) -> TimeInterval:
        return TimeInterval.from_hhmm(self.start, self.end)


class Engineer(BaseModel):
    """Recording engineer available for booking.

    ``working_hours`` maps lowercase weekday names to a window. A document
    that stores a single ``{start, end}`` window gets it on every weekday.
    Weekdays without an entry are days off.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    name: str
    email: Optional[str] = None
    specialties: list[str] = Field(default_factory=list)
    working_hours: dict[str, HoursWindow]
    hourly_rate: Optional[int] = None

    @field_validator("working_hours", mode="before")
    @classmethod
    def _expand_working_hours(cls, value: Any) -> Any:
        if isinstance(value, dict) and set(value) == {"start", "end"}:
            return {day: dict(value) for day in WEEKDAYS}
        if isinstance(value, dict):
            unknown = [k for k in value if str(k).lower() not in WEEKDAYS]
            if unknown:
                raise ValueError(f"Unknown weekday(s) in working hours: {unknown}")
            return {str(k).lower(): v for k, v in value.items()}
        return value

    def hours_for(self, day: date) -> Optional[TimeInterval]:
        """Working hours on ``day``, or None on a day off."""
        window = self.working_hours.get(WEEKDAYS[day.weekday()])
        return window.to_interval() if window else None

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any]) -> "Engineer":
        try:
            return cls.model_validate({**data, "id": doc_id})
        except ValidationError as exc:
            raise DocumentShapeError("engineers", doc_id, str(exc)) from exc

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude={"id"})
