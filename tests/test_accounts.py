"""Account side-channel tests — verification codes and account deletion.

Email goes to a FakeMailer; templates are the real Jinja2 ones.
"""

import re
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import pytest

from livepoll_core.accounts import (
    AccountService,
    generate_code,
    hash_secret,
    normalize_email,
)
from livepoll_core.errors import DeliveryFailed, InvalidToken, ValidationFailed
from livepoll_core.mail import EmailRenderer

from helpers.mocks import FakeMailer


class Clock:
    def __init__(self):
        self.now = datetime(2026, 10, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def accounts(repo, mailer, clock):
    svc = AccountService(mailer, site_url="https://poll.example/", clock=clock)
    svc._repo = repo
    return svc


def _code_from(mail):
    return re.search(r"\b(\d{6})\b", mail["text"]).group(1)


def _token_from(mail):
    link = re.search(r"https://\S+", mail["text"]).group(0)
    return parse_qs(urlparse(link).query)["token"][0]


class TestVerificationCodes:

    @pytest.mark.asyncio
    async def test_code_round_trip(self, accounts, mailer, db):
        expires = await accounts.request_verification_code(
            db, email=" Alice@Example.com ", purpose="register",
        )
        assert expires == datetime(2026, 10, 1, 9, 10, tzinfo=timezone.utc), "Valid 10 minutes"
        assert mailer.sent[0]["to"] == "alice@example.com"

        code = _code_from(mailer.sent[0])
        await accounts.verify_code(db, email="alice@example.com", code=code, purpose="register")
        with pytest.raises(InvalidToken):
            await accounts.verify_code(db, email="alice@example.com", code=code, purpose="register")

    @pytest.mark.asyncio
    async def test_expired_code(self, accounts, mailer, clock, db):
        await accounts.request_verification_code(db, email="a@b.co", purpose="register")
        clock.now += timedelta(minutes=11)
        with pytest.raises(InvalidToken):
            await accounts.verify_code(
                db, email="a@b.co", code=_code_from(mailer.sent[0]), purpose="register",
            )

    @pytest.mark.asyncio
    async def test_purpose_must_match(self, accounts, mailer, db):
        await accounts.request_verification_code(db, email="a@b.co", purpose="register")
        with pytest.raises(InvalidToken):
            await accounts.verify_code(
                db, email="a@b.co", code=_code_from(mailer.sent[0]), purpose="credential_change",
            )

    @pytest.mark.asyncio
    async def test_no_mailer(self, repo, db):
        svc = AccountService(None, site_url="https://poll.example")
        svc._repo = repo
        with pytest.raises(DeliveryFailed):
            await svc.request_verification_code(db, email="a@b.co", purpose="register")

    @pytest.mark.asyncio
    async def test_only_digest_is_stored(self, accounts, repo, mailer, db):
        await accounts.request_verification_code(db, email="a@b.co", purpose="register")
        code = _code_from(mailer.sent[0])
        stored = repo.codes[0]
        assert stored.code_hash != code, "Plaintext code must not be persisted"
        assert stored.code_hash == hash_secret(code)
        assert len(stored.code_hash) == 64

    def test_helpers(self):
        assert re.fullmatch(r"\d{6}", generate_code())
        with pytest.raises(ValidationFailed):
            normalize_email("not-an-email")


class TestAccountDeletion:

    @pytest.mark.asyncio
    async def test_link_deletes_owner_events(self, accounts, repo, mailer, db):
        mine = repo.add_event(owner_id="owner-1")
        repo.add_response(repo.add_question(mine, "single"), "s1", "A")
        theirs = repo.add_event(owner_id="owner-2")

        await accounts.request_account_deletion(db, owner_id="owner-1", email="o@x.io")
        link = re.search(r"https://\S+", mailer.sent[0]["text"]).group(0)
        assert link.startswith("https://poll.example/auth.html?action=delete-account&token=")

        owner = await accounts.confirm_account_deletion(db, token=_token_from(mailer.sent[0]))
        assert owner == "owner-1"
        assert mine.id not in repo.events and theirs.id in repo.events
        assert repo.responses == []

    @pytest.mark.asyncio
    async def test_token_is_single_use(self, accounts, mailer, db):
        await accounts.request_account_deletion(db, owner_id="owner-1", email="o@x.io")
        token = _token_from(mailer.sent[0])
        await accounts.confirm_account_deletion(db, token=token)
        with pytest.raises(InvalidToken):
            await accounts.confirm_account_deletion(db, token=token)

    @pytest.mark.asyncio
    async def test_new_request_invalidates_old_token(self, accounts, mailer, db):
        await accounts.request_account_deletion(db, owner_id="owner-1", email="o@x.io")
        await accounts.request_account_deletion(db, owner_id="owner-1", email="o@x.io")
        old, new = _token_from(mailer.sent[0]), _token_from(mailer.sent[1])
        with pytest.raises(InvalidToken):
            await accounts.confirm_account_deletion(db, token=old)
        assert await accounts.confirm_account_deletion(db, token=new) == "owner-1"

    @pytest.mark.asyncio
    async def test_only_digest_is_stored(self, accounts, repo, mailer, db):
        await accounts.request_account_deletion(db, owner_id="owner-1", email="o@x.io")
        token = _token_from(mailer.sent[0])
        stored = repo.tokens[0]
        assert stored.token_hash != token, "Plaintext token must not be persisted"
        assert stored.token_hash == hash_secret(token)

    @pytest.mark.asyncio
    async def test_expired_token(self, accounts, mailer, clock, db):
        await accounts.request_account_deletion(db, owner_id="owner-1", email="o@x.io")
        clock.now += timedelta(minutes=31)
        with pytest.raises(InvalidToken):
            await accounts.confirm_account_deletion(db, token=_token_from(mailer.sent[0]))


class TestRenderer:

    def test_html_is_escaped(self):
        rendered = EmailRenderer().account_deletion(link="https://x/?a=<b>", valid_minutes=30)
        assert "<b>" not in rendered.html
        assert rendered.subject == "Confirm account deletion"
