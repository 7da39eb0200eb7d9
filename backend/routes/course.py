from typing import List
from fastapi import APIRouter, Depends, Request, status
from database.models.user import Role, User
from schemas.auth import MessageResponse
from schemas.course import CourseCreateRequest, CourseResponse, CourseStudentsResponse, CourseUpdateRequest
from services.course import CourseService
from utils.auth import require_role
from utils.rate_limiter import limiter

course_router = APIRouter()
course_service = CourseService()

require_instructor = require_role(Role.INSTRUCTOR)
require_student = require_role(Role.STUDENT)

# ------------------ COURSE ROUTES ------------------ #

@course_router.post("/", response_model=CourseResponse, status_code=status.HTTP_201_CREATED, summary="Create a course")
@limiter.limit("10/minute")
async def create_course(request: Request, payload: CourseCreateRequest, current_user: User = Depends(require_instructor)):
    """
    Create a course owned by the calling instructor.

    Rate limit: 10 requests per minute.
    """
    return await course_service.create_course(current_user, payload)


@course_router.get("/", response_model=List[CourseResponse], summary="Fetch all courses")
@limiter.limit("30/minute")
async def get_all_courses(request: Request):
    """
    Retrieve up to 100 courses with their instructor.

    Useful for general course browsing.

    Rate limit: 30 requests per minute.
    """
    return await course_service.get_all_courses()


@course_router.get("/instructor", response_model=List[CourseResponse], summary="Courses of the calling instructor")
@limiter.limit("30/minute")
async def get_instructor_courses(request: Request, current_user: User = Depends(require_instructor)):
    """
    Rate limit: 30 requests per minute.
    """
    return await course_service.get_instructor_courses(current_user)


@course_router.get("/enrolled", response_model=List[CourseResponse], summary="Courses the calling student is enrolled in")
@limiter.limit("30/minute")
async def get_enrolled_courses(request: Request, current_user: User = Depends(require_student)):
    """
    Rate limit: 30 requests per minute.
    """
    return await course_service.get_enrolled_courses(current_user)


@course_router.get("/{course_id}", response_model=CourseResponse, summary="Get a course by ID")
@limiter.limit("30/minute")
async def get_course_by_id(course_id: str, request: Request):
    """
    Retrieve a single course using its unique ID.

    Args:
        course_id (str): The unique identifier of the course.

    Returns:
        Course details if found, otherwise raises 404 error.

    Rate limit: 30 requests per minute.
    """
    return await course_service.get_course_by_id(course_id)


@course_router.put("/{course_id}", response_model=CourseResponse, summary="Update a course")
@limiter.limit("10/minute")
async def update_course(course_id: str, request: Request, payload: CourseUpdateRequest,
                        current_user: User = Depends(require_instructor)):
    """
    Update the title, description or content of a course the caller owns.

    Rate limit: 10 requests per minute.
    """
    return await course_service.update_course(current_user, course_id, payload)


@course_router.delete("/{course_id}", response_model=MessageResponse, summary="Delete a course")
@limiter.limit("10/minute")
async def delete_course(course_id: str, request: Request, current_user: User = Depends(require_instructor)):
    """
    Rate limit: 10 requests per minute.
    """
    return await course_service.delete_course(current_user, course_id)


@course_router.post("/{course_id}/enroll", response_model=MessageResponse, summary="Enroll in a course")
@limiter.limit("10/minute")
async def enroll_in_course(course_id: str, request: Request, current_user: User = Depends(require_student)):
    """
    Enroll the calling student. Enrolling twice is rejected with 400.

    Rate limit: 10 requests per minute.
    """
    return await course_service.enroll(current_user, course_id)


@course_router.get("/{course_id}/students", response_model=CourseStudentsResponse, summary="Students of a course")
@limiter.limit("30/minute")
async def get_course_students(course_id: str, request: Request, current_user: User = Depends(require_instructor)):
    """
    List the students enrolled in a course the caller owns.

    Rate limit: 30 requests per minute.
    """
    return await course_service.get_course_students(current_user, course_id)
