"""
Clés naturelles (originDescriptor) par type d'enregistrement.

Une clé naturelle identifie « le même enregistrement logique » d'un appareil à l'autre,
indépendamment de tout identifiant généré. Chaque descripteur expose canonical_key(),
une forme texte déterministe utilisée pour la déduplication, les verrous et les conflits.
"""

import datetime as dt
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Type

from pydantic import BaseModel, field_validator, model_validator

VALID_PRAYERS = ("fajr", "zuhr", "asr", "maghrib", "isha")
VALID_DAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class RecordType(str, Enum):
    ATTENDANCE = "attendance"
    NAMAZ = "namaz"
    LEAVE = "leave"
    REMARK = "remark"
    TIMETABLE = "timetable"
    STUDENT = "student"


def _join(*parts: Any) -> str:
    return "|".join(str(p) for p in parts)


class AttendanceDescriptor(BaseModel):
    """Séance de cours : classe + date + période."""
    record_type: ClassVar[RecordType] = RecordType.ATTENDANCE

    course_type: str
    year: str
    division: Optional[str] = None  # Filière (commerce, science…) : uniquement pour certains cursus
    section: str
    date: dt.date
    period: int

    model_config = {"frozen": True}

    @field_validator("course_type", "year", "section")
    @classmethod
    def not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Champ obligatoire vide.")
        return v.strip()

    @field_validator("period")
    @classmethod
    def period_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("La période doit être supérieure ou égale à 1.")
        return v

    def canonical_key(self) -> str:
        return _join(
            self.course_type, self.year, self.division or "common",
            self.section, self.date.isoformat(), self.period,
        )


class NamazDescriptor(BaseModel):
    """Prière d'une section pour une date donnée."""
    record_type: ClassVar[RecordType] = RecordType.NAMAZ

    section: str
    date: dt.date
    prayer: str

    model_config = {"frozen": True}

    @field_validator("prayer")
    @classmethod
    def valid_prayer(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in VALID_PRAYERS:
            raise ValueError(f"Prière invalide. Valeurs acceptées : {VALID_PRAYERS}")
        return v

    def canonical_key(self) -> str:
        return _join(self.section, self.date.isoformat(), self.prayer)


class LeaveDescriptor(BaseModel):
    record_type: ClassVar[RecordType] = RecordType.LEAVE

    student_id: int
    from_date: dt.date
    to_date: dt.date

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def dates_ordered(self) -> "LeaveDescriptor":
        if self.to_date < self.from_date:
            raise ValueError("La date de fin du congé précède la date de début.")
        return self

    def canonical_key(self) -> str:
        return _join(self.student_id, self.from_date.isoformat(), self.to_date.isoformat())


class RemarkDescriptor(BaseModel):
    record_type: ClassVar[RecordType] = RecordType.REMARK

    student_id: int
    date: dt.date
    category: str

    model_config = {"frozen": True}

    def canonical_key(self) -> str:
        return _join(self.student_id, self.date.isoformat(), self.category.strip().lower())


class TimetableDescriptor(BaseModel):
    record_type: ClassVar[RecordType] = RecordType.TIMETABLE

    course_type: str
    year: str
    division: Optional[str] = None
    section: str
    day_of_week: str
    period: int

    model_config = {"frozen": True}

    @field_validator("day_of_week")
    @classmethod
    def valid_day(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in VALID_DAYS:
            raise ValueError(f"Jour invalide. Valeurs acceptées : {VALID_DAYS}")
        return v

    def canonical_key(self) -> str:
        return _join(
            self.course_type, self.year, self.division or "common",
            self.section, self.day_of_week, self.period,
        )


class StudentDescriptor(BaseModel):
    record_type: ClassVar[RecordType] = RecordType.STUDENT

    roll_no: str
    course_type: str
    year: str

    model_config = {"frozen": True}

    def canonical_key(self) -> str:
        return _join(self.roll_no.strip(), self.course_type, self.year)


DESCRIPTOR_MODELS: Dict[RecordType, Type[BaseModel]] = {
    RecordType.ATTENDANCE: AttendanceDescriptor,
    RecordType.NAMAZ: NamazDescriptor,
    RecordType.LEAVE: LeaveDescriptor,
    RecordType.REMARK: RemarkDescriptor,
    RecordType.TIMETABLE: TimetableDescriptor,
    RecordType.STUDENT: StudentDescriptor,
}

# Types soumis au verrou « une saisie par séance et par jour »
LOCKABLE_TYPES = frozenset({RecordType.ATTENDANCE, RecordType.NAMAZ})


def parse_descriptor(record_type: RecordType, data: Dict[str, Any]) -> BaseModel:
    """Valide un dict brut contre le descripteur du type. Lève ValidationError si invalide."""
    return DESCRIPTOR_MODELS[RecordType(record_type)].model_validate(data)
