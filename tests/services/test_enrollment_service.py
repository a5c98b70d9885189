import pytest

from campusdesk.services.enrollment_service import EnrollmentService
from campusdesk.services.errors import AlreadyEnrolledError, InvalidInputError, PolicyViolationError
from tests.helpers import fail, ok, rls_denied


@pytest.fixture
def admin_service(store, admin_profile) -> EnrollmentService:
    return EnrollmentService(store.gateway, admin_profile)


@pytest.fixture
def student_service(store, student_profile) -> EnrollmentService:
    return EnrollmentService(store.gateway, student_profile)


@pytest.mark.asyncio
class TestAdminEnrollments:

    async def test_list_joins_student_course_and_semester(self, admin_service, store):
        store.on("enrollments:list", ok([{"id": "e1"}]))

        assert await admin_service.list_enrollments() == [{"id": "e1"}]
        assert ("select", "*,student:profiles(*),course:courses(*),semester:semesters(*)") in store.query("enrollments:list").params

    async def test_form_options_keep_going_when_one_list_fails(self, admin_service, store):
        """Scenario: The semesters list is refused; students and courses still come back."""
        store.on("profiles:listStudentsForEnrollments", ok([{"id": "s1", "role": "student"}]))
        store.on("courses:listForEnrollments", ok([{"id": "c1", "code": "CS101", "name": "Intro"}]))
        store.on("semesters:listForEnrollments", rls_denied("semesters"))

        options = await admin_service.load_form_options()

        assert [s.id for s in options.students] == ["s1"]
        assert [c.id for c in options.courses] == ["c1"]
        assert options.semesters == []

    async def test_enroll_requires_all_fields(self, admin_service, store):
        with pytest.raises(InvalidInputError):
            await admin_service.enroll("s1", "c1", "")
        assert store.calls == []

    async def test_enroll_duplicate_is_already_enrolled(self, admin_service, store):
        store.on("enrollments:insert", fail("duplicate key value violates unique constraint", code="23505", status=409))

        with pytest.raises(AlreadyEnrolledError):
            await admin_service.enroll("s1", "c1", "sem1")

    async def test_remove_deletes_by_id(self, admin_service, store):
        store.on("enrollments:delete", ok(None, status=204))

        await admin_service.remove("e1")

        query = store.query("enrollments:delete")
        assert query.method == "DELETE"
        assert query.params == [("id", "eq.e1")]


@pytest.mark.asyncio
class TestSelfEnrollment:

    async def test_catalog_collects_courses_enrollments_and_active_semesters(self, student_service, store):
        store.on("courses:listCatalog", ok([{"id": "c1", "code": "CS101", "name": "Intro"}]))
        store.on("enrollments:listForStudent", ok([{"course_id": "c1"}]))
        store.on("semesters:listActive", ok([{"id": "sem1", "name": "Fall 2024", "is_active": True}]))

        catalog = await student_service.load_catalog()

        assert catalog.enrolled_course_ids == ["c1"]
        assert catalog.active_semesters[0].name == "Fall 2024"
        assert ("student_id", "eq.stu-1") in store.query("enrollments:listForStudent").params

    async def test_semester_is_required(self, student_service, store):
        with pytest.raises(InvalidInputError, match="select a semester"):
            await student_service.self_enroll("c1", None)
        assert store.calls == []

    async def test_already_enrolled_is_rejected_before_insert(self, student_service, store):
        store.on("enrollments:listForStudent", ok([{"course_id": "c1"}]))

        with pytest.raises(AlreadyEnrolledError):
            await student_service.self_enroll("c1", "sem1")
        assert "enrollments:insertFromCatalog" not in store.labels

    async def test_enrolls_the_student_themself(self, student_service, store):
        store.on("enrollments:listForStudent", ok([]))
        store.on("enrollments:insertFromCatalog", ok([{"id": "e9", "student_id": "stu-1", "course_id": "c2", "semester_id": "sem1"}], status=201))

        enrollment = await student_service.self_enroll("c2", "sem1")

        assert enrollment.id == "e9"
        assert store.query("enrollments:insertFromCatalog").body == {"student_id": "stu-1", "course_id": "c2", "semester_id": "sem1"}

    async def test_policy_violation_names_the_needed_policy(self, student_service, store):
        store.on("enrollments:listForStudent", ok([]))
        store.on("enrollments:insertFromCatalog", rls_denied("enrollments"))

        with pytest.raises(PolicyViolationError) as exc_info:
            await student_service.self_enroll("c2", "sem1")
        assert "student_id = auth.uid()" in exc_info.value.remediation

    async def test_unenroll_only_touches_own_rows(self, student_service, store):
        store.on("enrollments:deleteByStudent", ok([{"id": "e1"}]), ok([]))

        assert await student_service.unenroll_self("e1") is True
        assert await student_service.unenroll_self("someone-elses") is False
        query = store.query("enrollments:deleteByStudent")
        assert ("student_id", "eq.stu-1") in query.params
        assert "return=representation" in query.prefer
