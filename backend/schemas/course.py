from datetime import datetime
from typing import List, Optional

from schemas.base import ApiModel


class CourseCreateRequest(ApiModel):
    title: str
    description: str
    content: str


class CourseUpdateRequest(ApiModel):
    title: Optional[str] = None
    description: Optional[str] = None
    content: Optional[str] = None


class InstructorSummary(ApiModel):
    id: str
    username: str


class EnrollmentEntry(ApiModel):
    student: str
    enrolled_at: datetime


class CourseResponse(ApiModel):
    id: str
    title: str
    description: str
    content: str
    instructor: InstructorSummary
    enrolled_students: List[EnrollmentEntry]
    created_at: datetime


class EnrolledStudentResponse(ApiModel):
    id: str
    username: str
    email: str
    enrolled_at: datetime


class CourseStudentsResponse(ApiModel):
    course_title: str
    total_students: int
    students: List[EnrolledStudentResponse]
