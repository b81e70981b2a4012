# tests/test_achievements_api.py
import pytest
from fastapi.testclient import TestClient
from skillforge.services.achievements import ACHIEVEMENT_CATALOG, CATALOG_VERSION

@pytest.mark.stage3
class TestAchievementsAPI:
    USER_ID = "achievement_tester"
    SKILL_NAME = "Achievement Hunting"

    @pytest.fixture
    def skill_id(self, client: TestClient):
        client.post("/users/", json={"user_id": self.USER_ID})
        existing = [s for s in client.get("/skills/").json()["data"]["skills"] if s["name"] == self.SKILL_NAME]
        if existing:
            return existing[0]["id"]
        response = client.post("/skills/", json={"name": self.SKILL_NAME, "category": "Testing"})
        return response.json()["data"]["skill"]["id"]

    def test_catalog(self, client: TestClient):
        response = client.get("/achievements/")
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["version"] == CATALOG_VERSION
        assert len(data["achievements"]) == len(ACHIEVEMENT_CATALOG)
        assert {"first_steps", "dedicated_student", "speed_demon"} <= {a["id"] for a in data["achievements"]}

    def test_xp_unlocks_and_points(self, client: TestClient, skill_id):
        response = client.post("/progress/update", json={"user_id": self.USER_ID, "skill_id": skill_id, "xp_gained": 1600})
        assert response.status_code == 200
        unlocked = {a["id"] for a in response.json()["data"]["achievements_unlocked"]}
        assert {"xp_hunter", "level_up"} <= unlocked

        achievements = client.get(f"/achievements/user/{self.USER_ID}").json()["data"]["achievements"]
        earned = [a for a in achievements if a["earned"]]
        assert {"xp_hunter", "level_up"} <= {a["id"] for a in earned}
        assert all(a["earned_at"] is None for a in achievements if not a["earned"])

        profile = client.get(f"/users/{self.USER_ID}").json()["data"]["user"]
        assert profile["total_points"] == sum(a["points"] for a in earned)

        stats = client.get(f"/achievements/user/{self.USER_ID}/stats").json()["data"]["stats"]
        assert stats["earned_achievements"] == len(earned)
        assert stats["total_points"] == profile["total_points"]

    def test_manual_check_is_idempotent(self, client: TestClient, skill_id):
        client.post(f"/achievements/user/{self.USER_ID}/check")
        response = client.post(f"/achievements/user/{self.USER_ID}/check")
        assert response.status_code == 200
        assert response.json()["data"]["achievements_unlocked"] == []

    def test_leaderboard(self, client: TestClient, skill_id):
        client.post("/progress/update", json={"user_id": self.USER_ID, "skill_id": skill_id, "xp_gained": 1600})
        leaderboard = client.get("/achievements/leaderboard", params={"limit": 100}).json()["data"]["leaderboard"]
        assert any(e["user_id"] == self.USER_ID for e in leaderboard)
        points = [e["total_points"] for e in leaderboard]
        assert points == sorted(points, reverse=True)

    def test_unknown_user(self, client: TestClient):
        response = client.get("/achievements/user/ghost")
        assert response.status_code == 404
        assert response.json()["metadata"]["errorCode"] == 1008
