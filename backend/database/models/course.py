from beanie import Document, PydanticObjectId
from pydantic import BaseModel, Field
from datetime import datetime
from typing import List

from utils.dates import utc_now


class EnrolledStudent(BaseModel):
    student: PydanticObjectId
    enrolled_at: datetime = Field(default_factory=utc_now)


class Course(Document):
    title: str
    description: str
    content: str
    instructor: PydanticObjectId
    enrolled_students: List[EnrolledStudent] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)

    class Settings:
        name = "courses"
        indexes = [
            "instructor",
            "created_at",
            "enrolled_students.student",
        ]

    def is_enrolled(self, student_id: PydanticObjectId) -> bool:
        return any(entry.student == student_id for entry in self.enrolled_students)
