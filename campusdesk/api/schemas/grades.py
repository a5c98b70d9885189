# campusdesk/api/schemas/grades.py
from datetime import date
from typing import Dict, Optional, Union

from pydantic import BaseModel, Field


class AssignmentCreateRequest(BaseModel):
    title: str
    max_marks: float = 100
    due_date: Optional[date] = None


class SaveGradesRequest(BaseModel):
    """student_id -> marks; blank entries are skipped."""
    grades: Dict[str, Union[float, str, None]] = Field(default_factory=dict)
