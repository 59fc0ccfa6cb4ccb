from typing import Optional

from fastapi.testclient import TestClient

from config import Settings
from context import AppContext
from database import create_db_engine
from identity import IdentityError, IdentityProvider, UserProfile
from insights import TextGenerator
from main import create_app
from remote_store import RemoteAdapter
from storage import LocalStorage


class FakeIdentity(IdentityProvider):
    def __init__(self) -> None:
        self.accounts: dict[str, tuple[str, UserProfile]] = {}
        self.listeners: list = []

    def _emit(self, profile: Optional[UserProfile]) -> None:
        for listener in list(self.listeners):
            listener(profile)

    async def sign_up(self, email, password, display_name=None):
        if email in self.accounts:
            raise IdentityError("Email already in use")
        profile = UserProfile(
            uid=f"uid-{len(self.accounts) + 1}", email=email, display_name=display_name
        )
        self.accounts[email] = (password, profile)
        self._emit(profile)
        return profile

    async def sign_in(self, email, password):
        stored = self.accounts.get(email)
        if stored is None or stored[0] != password:
            raise IdentityError("Invalid email or password")
        self._emit(stored[1])
        return stored[1]

    async def sign_out(self, uid):
        self._emit(None)

    async def get_user(self, uid):
        for _, profile in self.accounts.values():
            if profile.uid == uid:
                return profile
        return None

    async def update_profile(self, uid, *, display_name=None, photo_url=None):
        for email, (password, profile) in self.accounts.items():
            if profile.uid == uid:
                changed = UserProfile(
                    uid=uid,
                    email=profile.email,
                    display_name=display_name or profile.display_name,
                    photo_url=photo_url or profile.photo_url,
                )
                self.accounts[email] = (password, changed)
                return changed
        raise IdentityError("No such user")

    def on_auth_state_changed(self, listener):
        self.listeners.append(listener)
        return lambda: self.listeners.remove(listener)


class CannedGenerator(TextGenerator):
    async def generate(self, prompt, *, system_instruction, temperature):
        return "Looking good."


def _settings() -> Settings:
    return Settings(
        database_url="sqlite:///:memory:",
        local_storage_path=None,
        session_secret="test-secret",
        session_max_age_secs=3600,
        demo_write_delay_secs=0,
        currency_code="INR",
        currency_symbol="₹",
        genai_api_key=None,
        genai_model="gemini-2.5-flash",
        genai_temperature=0.7,
        genai_timeout_secs=5,
        log_level="INFO",
    )


def _context(identity: Optional[IdentityProvider] = None) -> AppContext:
    settings = _settings()
    return AppContext(
        settings,
        engine=create_db_engine(settings.database_url),
        identity=identity,
        text_generator=CannedGenerator(),
        local_storage=LocalStorage(),
    )


def test_requests_without_a_session_are_rejected() -> None:
    with TestClient(create_app(_context())) as client:
        assert client.get("/api/transactions").status_code == 401
        assert client.get("/api/profile").status_code == 401


def test_demo_session_sees_seeded_data_and_dashboard() -> None:
    with TestClient(create_app(_context())) as client:
        resp = client.post("/api/session/demo")
        assert resp.status_code == 200
        assert resp.json()["isDemo"] is True
        assert resp.json()["firstName"] == "Guest"

        page = client.get("/api/transactions").json()
        assert page["totalItems"] == 3
        assert page["perPage"] == 15
        assert {"userId", "createdAt"} <= set(page["items"][0])

        dashboard = client.get("/api/dashboard").json()
        assert dashboard["summary"] == {
            "totalIncome": 45000,
            "totalExpense": 1550,
            "balance": 43450,
        }
        assert {c["name"] for c in dashboard["categories"]} == {"Food", "Transportation"}
        assert len(dashboard["recent"]) == 3

        income_names = {c["name"] for c in client.get("/api/categories?type=income").json()}
        assert "NA" in income_names
        assert "Salary" in income_names
        assert "Food" not in income_names


def test_transaction_writes_validate_before_persisting() -> None:
    with TestClient(create_app(_context())) as client:
        client.post("/api/session/demo")
        base = {"type": "expense", "amount": 250, "date": "2024-02-03"}

        assert client.post("/api/transactions", json={**base, "category": "Salary"}).status_code == 400
        assert client.post("/api/transactions", json={**base, "category": "Food", "amount": -1}).status_code == 422
        assert client.post("/api/transactions", json={**base, "category": "Food", "extra": 1}).status_code == 422
        assert client.get("/api/transactions").json()["totalItems"] == 3

        assert client.post("/api/transactions", json={**base, "category": "NA"}).status_code == 201
        assert client.post("/api/transactions", json={**base, "category": "Food", "notes": "Dinner"}).status_code == 201

        found = client.get("/api/transactions", params={"q": "dinner"}).json()["items"]
        assert len(found) == 1
        txn_id = found[0]["id"]

        assert client.patch(f"/api/transactions/{txn_id}", json={"notes": None}).status_code == 204
        assert client.patch(f"/api/transactions/{txn_id}", json={"amount": None}).status_code == 422
        assert client.patch("/api/transactions/missing", json={"amount": 5}).status_code == 404

        assert client.delete(f"/api/transactions/{txn_id}").status_code == 204
        assert client.delete(f"/api/transactions/{txn_id}").status_code == 204


def test_listing_filters_by_range_and_sorts() -> None:
    with TestClient(create_app(_context())) as client:
        client.post("/api/session/demo")
        for day, amount in (("2023-05-01", 10), ("2023-05-20", 30), ("2023-06-01", 20)):
            client.post(
                "/api/transactions",
                json={"type": "expense", "amount": amount, "category": "Food", "date": day},
            )

        resp = client.get(
            "/api/transactions",
            params={
                "range": "custom",
                "start": "2023-05-31",
                "end": "2023-05-01",
                "sort": "amount",
                "order": "asc",
            },
        )

        assert [t["amount"] for t in resp.json()["items"]] == [10, 30]
        assert client.get("/api/transactions", params={"range": "custom"}).status_code == 400


def test_category_delete_cascades_and_protects_system_category() -> None:
    with TestClient(create_app(_context())) as client:
        client.post("/api/session/demo")
        categories = client.get("/api/categories").json()
        food = next(c for c in categories if c["name"] == "Food")
        na = next(c for c in categories if c["name"] == "NA")

        assert client.delete(f"/api/categories/{na['id']}").status_code == 400
        assert client.delete(f"/api/categories/{food['id']}").status_code == 204

        txns = client.get("/api/transactions").json()["items"]
        assert "Food" not in {t["category"] for t in txns}
        assert "NA" in {t["category"] for t in txns}

        assert client.post("/api/categories", json={"name": "Pets", "type": "expense"}).status_code == 201
        assert client.post("/api/categories", json={"name": "Pets", "type": "expense"}).status_code == 400
        assert client.post("/api/categories", json={"name": "NA", "type": "income"}).status_code == 400


def test_deleting_a_missing_category_is_a_no_op() -> None:
    with TestClient(create_app(_context())) as client:
        client.post("/api/session/demo")
        pets = client.post("/api/categories", json={"name": "Pets", "type": "expense"})
        assert pets.status_code == 201
        pets_id = next(c["id"] for c in client.get("/api/categories").json() if c["name"] == "Pets")

        assert client.delete("/api/categories/missing").status_code == 204
        assert client.delete(f"/api/categories/{pets_id}").status_code == 204
        assert client.delete(f"/api/categories/{pets_id}").status_code == 204
        assert "Pets" not in {c["name"] for c in client.get("/api/categories").json()}


def test_plans_report_progress() -> None:
    with TestClient(create_app(_context())) as client:
        client.post("/api/session/demo")
        client.post(
            "/api/transactions",
            json={"type": "income", "amount": 1000, "category": "Gift", "date": "2023-01-10"},
        )
        created = client.post(
            "/api/plans",
            json={
                "name": "January",
                "startDate": "2023-01-01",
                "endDate": "2023-01-31",
                "targetIncome": 2000,
                "targetSavings": 0,
            },
        )
        assert created.status_code == 201

        plans = client.get("/api/plans").json()
        assert plans[0]["name"] == "January"
        assert plans[0]["progress"]["incomeProgress"] == 50
        assert plans[0]["progress"]["savingsProgress"] == 100
        assert plans[0]["progress"]["isSavingsNegative"] is False

        plan_id = plans[0]["id"]
        assert client.patch(f"/api/plans/{plan_id}", json={"targetIncome": 1000}).status_code == 204
        assert client.get("/api/plans").json()[0]["progress"]["incomeProgress"] == 100
        assert client.delete(f"/api/plans/{plan_id}").status_code == 204
        assert client.get("/api/plans").json() == []


def test_insights_and_demo_profile_edits() -> None:
    with TestClient(create_app(_context())) as client:
        client.post("/api/session/demo")

        assert client.post("/api/insights").json() == {"text": "Looking good."}

        resp = client.patch("/api/profile", json={"displayName": "Sam Rivera"})
        assert resp.json()["firstName"] == "Sam"
        assert client.get("/api/profile").json()["displayName"] == "Sam Rivera"

        assert client.delete("/api/session").status_code == 204
        assert client.get("/api/profile").status_code == 401


def test_sign_in_requires_a_configured_identity_provider() -> None:
    with TestClient(create_app(_context())) as client:
        resp = client.post("/api/session/sign-in", json={"email": "a@b.c", "password": "pw"})
        assert resp.status_code == 503


def test_signed_in_user_gets_remote_storage() -> None:
    with TestClient(create_app(_context(FakeIdentity()))) as client:
        resp = client.post(
            "/api/session/sign-up",
            json={"email": "sam@example.com", "password": "pw", "displayName": "Sam"},
        )
        assert resp.status_code == 200
        assert resp.json()["isDemo"] is False

        assert len(client.get("/api/categories").json()) == 16
        assert client.get("/api/transactions").json()["totalItems"] == 0

        client.delete("/api/session")
        bad = client.post("/api/session/sign-in", json={"email": "sam@example.com", "password": "no"})
        assert bad.status_code == 401
        good = client.post("/api/session/sign-in", json={"email": "sam@example.com", "password": "pw"})
        assert good.status_code == 200
        assert client.get("/api/profile").json()["email"] == "sam@example.com"


def test_permission_denied_is_reported_with_alert(monkeypatch) -> None:
    context = _context(FakeIdentity())
    with TestClient(create_app(context)) as client:
        client.post(
            "/api/session/sign-up",
            json={"email": "sam@example.com", "password": "pw", "displayName": "Sam"},
        )
        monkeypatch.setattr(
            context,
            "adapter_for",
            lambda uid: RemoteAdapter(context.database, uid, auth_uid="someone-else"),
        )

        resp = client.get("/api/transactions")

        assert resp.status_code == 403
        assert resp.json()["alert"] is True
