from typing import Iterable, List
from fastapi import HTTPException, status
from beanie import PydanticObjectId
from beanie.operators import In, Or, RegEx
import bleach
import logging
import re

from database.models.course import Course, EnrolledStudent
from database.models.user import User
from schemas.course import (
    CourseCreateRequest,
    CourseResponse,
    CourseStudentsResponse,
    CourseUpdateRequest,
    EnrolledStudentResponse,
    EnrollmentEntry,
    InstructorSummary,
)
from schemas.auth import MessageResponse

logger = logging.getLogger(__name__)

COURSE_LIST_LIMIT = 100
UNKNOWN_INSTRUCTOR = "Unknown"


async def usernames_by_id(user_ids: Iterable[PydanticObjectId]) -> dict:
    ids = list(set(user_ids))
    if not ids:
        return {}
    users = await User.find(In(User.id, ids)).to_list()
    return {user.id: user.username for user in users}


def to_course_response(course: Course, usernames: dict) -> CourseResponse:
    return CourseResponse(
        id=str(course.id),
        title=course.title,
        description=course.description,
        content=course.content,
        instructor=InstructorSummary(
            id=str(course.instructor),
            username=usernames.get(course.instructor, UNKNOWN_INSTRUCTOR),
        ),
        enrolled_students=[
            EnrollmentEntry(student=str(entry.student), enrolled_at=entry.enrolled_at)
            for entry in course.enrolled_students
        ],
        created_at=course.created_at,
    )


async def to_course_responses(courses: List[Course]) -> List[CourseResponse]:
    usernames = await usernames_by_id(course.instructor for course in courses)
    return [to_course_response(course, usernames) for course in courses]


class CourseService:
    async def _get_course(self, course_id: str) -> Course:
        try:
            course = await Course.get(PydanticObjectId(course_id))
        except Exception:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid course ID."
            )

        if not course:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Course not found"
            )
        return course

    def _ensure_owner(self, course: Course, user: User, detail: str = "Not authorized.") -> None:
        if course.instructor != user.id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=detail
            )

    async def create_course(self, instructor: User, payload: CourseCreateRequest) -> CourseResponse:
        course = Course(
            title=bleach.clean(payload.title).strip(),
            description=bleach.clean(payload.description).strip(),
            content=bleach.clean(payload.content).strip(),
            instructor=instructor.id,
        )
        await course.insert()
        logger.info(f"Instructor {instructor.id} created course {course.id}")
        return to_course_response(course, {instructor.id: instructor.username})

    async def get_all_courses(self) -> List[CourseResponse]:
        courses = await Course.find_all().limit(COURSE_LIST_LIMIT).to_list()
        return await to_course_responses(courses)

    async def get_instructor_courses(self, instructor: User) -> List[CourseResponse]:
        courses = await Course.find(
            Course.instructor == instructor.id
        ).limit(COURSE_LIST_LIMIT).to_list()
        return [to_course_response(course, {instructor.id: instructor.username}) for course in courses]

    async def get_enrolled_courses(self, student: User) -> List[CourseResponse]:
        courses = await Course.find(
            {"enrolled_students.student": student.id}
        ).limit(COURSE_LIST_LIMIT).to_list()
        return await to_course_responses(courses)

    async def get_course_by_id(self, course_id: str) -> CourseResponse:
        course = await self._get_course(course_id)
        return (await to_course_responses([course]))[0]

    async def update_course(self, instructor: User, course_id: str, payload: CourseUpdateRequest) -> CourseResponse:
        course = await self._get_course(course_id)
        self._ensure_owner(course, instructor)

        for field, value in payload.model_dump(exclude_none=True).items():
            setattr(course, field, bleach.clean(value).strip())
        await course.save()
        return to_course_response(course, {instructor.id: instructor.username})

    async def delete_course(self, instructor: User, course_id: str) -> MessageResponse:
        course = await self._get_course(course_id)
        self._ensure_owner(course, instructor)

        await course.delete()
        logger.info(f"Instructor {instructor.id} deleted course {course_id}")
        return MessageResponse(message="Course deleted.")

    async def enroll(self, student: User, course_id: str) -> MessageResponse:
        course = await self._get_course(course_id)
        if course.is_enrolled(student.id):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Already enrolled"
            )

        course.enrolled_students.append(EnrolledStudent(student=student.id))
        await course.save()

        if course.id not in student.enrolled_courses:
            student.enrolled_courses.append(course.id)
            await student.save()

        return MessageResponse(message="Enrollment successful")

    async def get_course_students(self, instructor: User, course_id: str) -> CourseStudentsResponse:
        course = await self._get_course(course_id)
        self._ensure_owner(course, instructor, detail="Not authorized to view this course's students")

        student_ids = [entry.student for entry in course.enrolled_students]
        students = {
            user.id: user
            for user in await User.find(In(User.id, student_ids)).to_list()
        } if student_ids else {}

        entries = [
            EnrolledStudentResponse(
                id=str(entry.student),
                username=students[entry.student].username,
                email=students[entry.student].email,
                enrolled_at=entry.enrolled_at,
            )
            for entry in course.enrolled_students
            if entry.student in students
        ]
        return CourseStudentsResponse(
            course_title=course.title,
            total_students=len(entries),
            students=entries,
        )

    async def search_courses(self, keyword: str) -> List[Course]:
        pattern = re.escape(keyword)
        return await Course.find(
            Or(
                RegEx(Course.title, pattern, "i"),
                RegEx(Course.description, pattern, "i"),
                RegEx(Course.content, pattern, "i"),
            )
        ).to_list()
