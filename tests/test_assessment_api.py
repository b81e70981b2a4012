# tests/test_assessment_api.py
import pytest
from fastapi.testclient import TestClient

@pytest.mark.stage3
class TestAssessmentFlow:
    USER_ID = "assessment_tester"
    # No templates exist for this name, so its category's templates are used
    SKILL_NAME = "Python Assessments"
    SKILL_CATEGORY = "Python"

    @pytest.fixture
    def skill_id(self, client: TestClient):
        client.post("/users/", json={"user_id": self.USER_ID})
        existing = [s for s in client.get("/skills/").json()["data"]["skills"] if s["name"] == self.SKILL_NAME]
        if existing:
            return existing[0]["id"]
        response = client.post("/skills/", json={"name": self.SKILL_NAME, "category": self.SKILL_CATEGORY})
        assert response.status_code == 201
        return response.json()["data"]["skill"]["id"]

    @pytest.fixture
    def answer_key(self, question_service):
        """Maps question text to its correct answer for the Python templates."""
        return {
            t.question: t.correct_answer
            for templates in question_service.templates[self.SKILL_CATEGORY].values()
            for t in templates
        }

    def _generate(self, client: TestClient, skill_id: int, level: int = 1, count: int = 2):
        response = client.post("/assessment/generate", json={
            "user_id": self.USER_ID, "skill_id": skill_id, "level": level, "question_count": count,
        })
        assert response.status_code == 200, response.text
        return response.json()["data"]["assessment"]

    def test_generate_hides_answers(self, client: TestClient, skill_id):
        assessment = self._generate(client, skill_id)
        assert assessment["skill_name"] == self.SKILL_NAME
        assert assessment["time_limit"] == 300
        assert len(assessment["questions"]) == 2
        for question in assessment["questions"]:
            assert "correct_answer" not in question
            assert question["options"]

    def test_generate_validation(self, client: TestClient, skill_id):
        response = client.post("/assessment/generate", json={"user_id": self.USER_ID, "skill_id": skill_id, "level": 9})
        assert response.status_code == 400
        assert response.json()["metadata"]["errorCode"] == 1017

        response = client.post("/assessment/generate", json={"user_id": self.USER_ID, "skill_id": 987654, "level": 1})
        assert response.status_code == 404
        assert response.json()["metadata"]["errorCode"] == 1011

        response = client.post("/assessment/generate", json={"user_id": self.USER_ID, "level": 1})
        assert response.status_code == 400
        assert response.json()["metadata"]["errorCode"] == 1007

    def test_perfect_submission_flow(self, client: TestClient, skill_id, answer_key):
        assessment = self._generate(client, skill_id)
        answers = [
            {"question_id": q["id"], "answer": answer_key[q["question"]]}
            for q in assessment["questions"]
        ]
        response = client.post("/assessment/submit", json={
            "user_id": self.USER_ID, "assessment_id": assessment["id"], "answers": answers, "total_time": 45,
        })
        assert response.status_code == 200, response.text
        results = response.json()["data"]["results"]
        assert results["score"] == 1.0
        assert results["points_earned"] == results["points_possible"]
        assert results["xp_earned"] > 0
        assert all(q["correct"] for q in results["questions"])

        progress = client.get(f"/progress/{self.USER_ID}/{skill_id}").json()["data"]["progress"]
        assert progress["xp"] >= results["xp_earned"]
        assert progress["assessments_completed"] >= 1

        history = client.get(f"/assessment/history/{self.USER_ID}").json()["data"]["assessments"]
        assert history[0]["assessment_id"] == assessment["id"]
        assert history[0]["skill_name"] == self.SKILL_NAME

    def test_wrong_answers_score_zero(self, client: TestClient, skill_id):
        assessment = self._generate(client, skill_id)
        answers = [{"question_id": q["id"], "answer": "not an option"} for q in assessment["questions"]]
        response = client.post("/assessment/submit", json={
            "user_id": self.USER_ID, "assessment_id": assessment["id"], "answers": answers, "total_time": 100,
        })
        assert response.status_code == 200
        results = response.json()["data"]["results"]
        assert results["score"] == 0.0
        assert results["points_earned"] == 0
        assert all(q["correct_answer"] for q in results["questions"])

    def test_submit_unknown_assessment(self, client: TestClient, skill_id):
        response = client.post("/assessment/submit", json={
            "user_id": self.USER_ID, "assessment_id": 987654, "answers": [], "total_time": 10,
        })
        assert response.status_code == 404
        assert response.json()["metadata"]["errorCode"] == 1012
