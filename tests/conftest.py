"""
Shared pytest fixtures for the CivicConnect API.

Each test gets its own application bound to an in-memory SQLite database, a
scripted language model in place of Gemini, and helpers that create users,
ideas and policies directly through the ORM.
"""
import json
import os
import re
import tempfile
from types import SimpleNamespace

import pytest

# The module-level ``app`` in app.py is built on import; point it at the
# testing config and a throwaway directory before anything imports it.
_RUNTIME_DIR = tempfile.mkdtemp(prefix="civicconnect-tests-")
os.environ["FLASK_CONFIG"] = "testing"
os.environ["LOG_DIR"] = os.path.join(_RUNTIME_DIR, "logs")
os.environ["UPLOAD_FOLDER"] = os.path.join(_RUNTIME_DIR, "uploads")

from app import create_app  # noqa: E402
from extensions import db  # noqa: E402
from models import Idea, Policy, User  # noqa: E402
from utils.ai_client import LanguageModelError  # noqa: E402
from utils.security import reset_attempts  # noqa: E402
from utils.tokens import issue_tokens  # noqa: E402

PASSWORD = "Civic2025pass"
IDEA_ID_PATTERN = re.compile(r'"id": "([0-9a-f-]{36})"')


class FakeLanguageModel:
    """Scripted stand-in for the Gemini client.

    Replies are consumed in order. A string is returned as-is, a dict or list
    is JSON-encoded, an exception instance is raised and a callable receives
    the prompt and returns the reply.
    """

    def __init__(self):
        self.replies = []
        self.prompts = []

    def queue(self, *replies):
        self.replies.extend(replies)

    def prompt(self, text):
        self.prompts.append(text)
        if not self.replies:
            raise LanguageModelError("No scripted reply left")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            reply = reply(text)
        if isinstance(reply, (dict, list)):
            return json.dumps(reply)
        return reply


def score_every_idea(amount, score=80, priority="High"):
    """Build a scoring reply that allocates ``amount`` to each idea in the batch prompt."""

    def reply(prompt_text):
        return {
            "allocations": [
                {
                    "ideaId": idea_id,
                    "allocatedBudget": amount,
                    "priorityScore": score,
                    "priority": priority,
                    "justification": "Strong citizen impact",
                    "estimatedTimeline": "6 months",
                    "expectedROI": "High",
                }
                for idea_id in IDEA_ID_PATTERN.findall(prompt_text)
            ]
        }

    return reply


@pytest.fixture()
def fake_model():
    return FakeLanguageModel()


@pytest.fixture()
def app(tmp_path, fake_model):
    application = create_app("testing")
    application.config["UPLOAD_FOLDER"] = str(tmp_path / "uploads")
    for subdir in ("concerns", "policies"):
        (tmp_path / "uploads" / subdir).mkdir(parents=True, exist_ok=True)
    application.extensions["language_model"] = fake_model
    reset_attempts()

    yield application

    with application.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def make_user(app):
    counter = {"n": 0}

    def _make(role="citizen", name=None, active=True):
        counter["n"] += 1
        email = f"{role}{counter['n']}@civicmail.in"
        with app.app_context():
            user = User(
                name=name or f"{role.title()} Person {counter['n']}",
                email=email,
                role=role,
                is_active=active,
            )
            user.set_password(PASSWORD)
            user.ensure_avatar()
            db.session.add(user)
            db.session.flush()
            access, refresh = issue_tokens(user)
            db.session.commit()
            user_id = user.id
        return SimpleNamespace(
            id=user_id,
            email=email,
            password=PASSWORD,
            token=access,
            refresh=refresh,
            headers={"Authorization": f"Bearer {access}"},
        )

    return _make


@pytest.fixture()
def citizen(make_user):
    return make_user("citizen", name="Asha Verma")


@pytest.fixture()
def other_citizen(make_user):
    return make_user("citizen", name="Ravi Kumar")


@pytest.fixture()
def admin(make_user):
    return make_user("admin", name="Meera Admin")


@pytest.fixture()
def make_idea(app):
    counter = {"n": 0}

    def _make(submitter, status="Submitted", visibility="Public", **fields):
        counter["n"] += 1
        with app.app_context():
            idea = Idea(
                title=fields.pop("title", f"Solar street lighting for ward {counter['n']}"),
                description=fields.pop(
                    "description",
                    "Install solar powered street lights along the main roads to cut "
                    "electricity costs and improve night-time safety for residents.",
                ),
                category=fields.pop("category", "Infrastructure Development"),
                target_area=fields.pop("target_area", "Ward 12, Pune"),
                expected_impact=fields.pop("expected_impact", "District"),
                status=status,
                visibility=visibility,
                submitted_by=submitter.id,
                **fields,
            )
            db.session.add(idea)
            db.session.commit()
            return idea.id

    return _make


@pytest.fixture()
def make_policy(app):
    def _make(creator, status="Published", **fields):
        with app.app_context():
            policy = Policy(
                title=fields.pop("title", "Urban Clean Air Programme 2025"),
                description=fields.pop(
                    "description",
                    "A city-wide programme to reduce particulate pollution through "
                    "electric buses, dust control and industrial emission audits.",
                ),
                category=fields.pop("category", "Environment"),
                status=status,
                created_by=creator.id,
                **fields,
            )
            db.session.add(policy)
            db.session.commit()
            return policy.id

    return _make
