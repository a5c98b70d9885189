from tests.helpers import ok


def test_create_assignment(client, login_as, store, faculty_profile):
    login_as(faculty_profile)
    store.on("assignments:insert", ok([{"id": "a1", "course_id": "c1", "title": "Lab 1", "max_marks": 20}], status=201))

    response = client.post("/api/v1/grades/courses/c1/assignments", json={"title": "Lab 1", "max_marks": 20})

    assert response.status_code == 201
    assert response.json()["id"] == "a1"


def test_create_assignment_with_blank_title(client, login_as, store, faculty_profile):
    login_as(faculty_profile)

    response = client.post("/api/v1/grades/courses/c1/assignments", json={"title": "  "})

    assert response.status_code == 400
    assert store.calls == []


def test_save_grades(client, login_as, store, faculty_profile):
    login_as(faculty_profile)
    store.on("grades:upsertForAssignment", ok(None, status=201))

    response = client.put("/api/v1/grades/assignments/a1/grades", json={"grades": {"s1": "18", "s2": ""}})

    assert response.status_code == 200
    assert response.json()["saved"] == 1


def test_save_nothing_is_bad_request(client, login_as, store, faculty_profile):
    login_as(faculty_profile)

    response = client.put("/api/v1/grades/assignments/a1/grades", json={"grades": {}})

    assert response.status_code == 400
    assert response.json()["detail"]["message"] == "Please enter at least one grade."


def test_student_sees_own_grades(client, login_as, store, student_profile):
    login_as(student_profile)
    store.on("grades:listForStudent", ok([{"id": "g1", "marks_obtained": 9, "assignment": {"title": "Quiz", "max_marks": 10}}]))

    response = client.get("/api/v1/grades/me")

    assert response.status_code == 200
    assert response.json()[0]["percentage"] == 90


def test_students_cannot_grade(client, login_as, store, student_profile):
    login_as(student_profile)

    response = client.put("/api/v1/grades/assignments/a1/grades", json={"grades": {"stu-1": 100}})

    assert response.status_code == 403
    assert store.calls == []
