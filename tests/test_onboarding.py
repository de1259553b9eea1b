import pytest

from intake_pipeline.errors import AuthorizationDenied
from intake_pipeline.onboarding import FORMAT_ERROR, WAITING_ID, WAITING_NICKNAME, OnboardingFlow

from conftest import ADMIN_ID, OTHER_ADMIN_ID, OUTSIDER_ID


@pytest.fixture
def flow(registry, approvers, store):
    return OnboardingFlow(registry, approvers, store, ttl_seconds=600)


def test_numeric_id_then_nickname_registers(flow, registry):
    assert flow.start(ADMIN_ID).state == WAITING_ID

    reply = flow.handle_message(ADMIN_ID, "123456789")
    assert reply.state == WAITING_NICKNAME
    assert "123456789" in reply.text

    reply = flow.handle_message(ADMIN_ID, "Ivan")
    assert reply.state is None
    assert reply.operator.external_id == 123456789
    assert reply.operator.nickname == "Ivan"
    assert reply.operator.added_by == ADMIN_ID
    assert flow.pending(ADMIN_ID) is None
    assert registry.find(123456789).nickname == "Ivan"


def test_unknown_handle_stays_waiting_for_id(flow):
    flow.start(ADMIN_ID)
    reply = flow.handle_message(ADMIN_ID, "@unknown")

    assert reply.state == WAITING_ID
    assert "@unknown" in reply.text
    assert flow.pending(ADMIN_ID)["state"] == WAITING_ID


def test_known_handle_resolves_to_identity(flow, registry):
    registry.remember_identity(777, "@Mechanic")
    flow.start(ADMIN_ID)

    reply = flow.handle_message(ADMIN_ID, "@mechanic")
    assert reply.state == WAITING_NICKNAME

    operator = flow.handle_message(ADMIN_ID, "Механик").operator
    assert operator.external_id == 777
    assert operator.handle == "mechanic"


def test_garbage_identity_reprompts(flow):
    flow.start(ADMIN_ID)
    assert flow.handle_message(ADMIN_ID, "ivan petrov").state == WAITING_ID


@pytest.mark.parametrize("text", ["99999999999999999999", "9223372036854775808"])
def test_identity_beyond_integer_range_reprompts(flow, text):
    flow.start(ADMIN_ID)
    reply = flow.handle_message(ADMIN_ID, text)

    assert reply.state == WAITING_ID
    assert reply.text.startswith(FORMAT_ERROR)
    assert flow.pending(ADMIN_ID)["state"] == WAITING_ID


def test_largest_integer_identity_is_accepted(flow):
    flow.start(ADMIN_ID)
    assert flow.handle_message(ADMIN_ID, "9223372036854775807").state == WAITING_NICKNAME


@pytest.mark.parametrize("text", ["@", "@  "])
def test_bare_at_sign_is_a_format_error(flow, text):
    flow.start(ADMIN_ID)
    reply = flow.handle_message(ADMIN_ID, text)

    assert reply.state == WAITING_ID
    assert reply.text.startswith(FORMAT_ERROR)
    assert "None" not in reply.text


def test_short_nickname_reprompts(flow, registry):
    flow.start(ADMIN_ID)
    flow.handle_message(ADMIN_ID, "123456789")

    reply = flow.handle_message(ADMIN_ID, "A")
    assert reply.state == WAITING_NICKNAME
    assert registry.find(123456789) is None


@pytest.mark.parametrize("word", ["отмена", "/cancel", "Cancel"])
@pytest.mark.parametrize("steps", [[], ["123456789"]])
def test_cancel_from_any_state_creates_nothing(flow, registry, word, steps):
    flow.start(ADMIN_ID)
    for text in steps:
        flow.handle_message(ADMIN_ID, text)

    reply = flow.handle_message(ADMIN_ID, word)

    assert reply.state is None
    assert flow.pending(ADMIN_ID) is None
    assert registry.list_with_counts() == []


def test_messages_without_pending_flow_are_ignored(flow):
    assert flow.handle_message(ADMIN_ID, "123456789") is None


def test_outsider_cannot_start_or_feed(flow):
    with pytest.raises(AuthorizationDenied):
        flow.start(OUTSIDER_ID)
    assert flow.handle_message(OUTSIDER_ID, "123456789") is None


def test_conversations_are_per_admin(flow):
    flow.start(ADMIN_ID)
    flow.start(OTHER_ADMIN_ID)
    flow.handle_message(ADMIN_ID, "123456789")

    assert flow.pending(ADMIN_ID)["state"] == WAITING_NICKNAME
    assert flow.pending(OTHER_ADMIN_ID)["state"] == WAITING_ID


def test_pending_state_expires(flow, clock):
    flow.start(ADMIN_ID)
    clock.advance(601)
    assert flow.handle_message(ADMIN_ID, "123456789") is None


def test_registration_hook_failure_is_not_fatal(registry, approvers, store):
    def broken_hook(operator):
        raise RuntimeError("sheet unavailable")

    flow = OnboardingFlow(registry, approvers, store, on_registered=broken_hook)
    reply = flow.register_direct(ADMIN_ID, "123456789", "Ivan")

    assert reply.operator is not None
    assert registry.find(123456789) is not None


def test_register_direct_validates_input(flow, registry):
    assert flow.register_direct(ADMIN_ID, "@nobody", "Ivan").operator is None
    assert flow.register_direct(ADMIN_ID, "123", "I").operator is None
    assert registry.list_with_counts() == []

    reply = flow.register_direct(ADMIN_ID, "123", "Иван")
    assert reply.operator.nickname == "Иван"

    renamed = flow.register_direct(OTHER_ADMIN_ID, "123", "Иван Петрович")
    assert renamed.operator.id == reply.operator.id
    assert renamed.operator.nickname == "Иван Петрович"


def test_register_direct_rejects_oversized_id_and_bare_handle(flow, registry):
    for target in ("99999999999999999999", "@"):
        reply = flow.register_direct(ADMIN_ID, target, "Иван")
        assert reply.operator is None
        assert reply.text == FORMAT_ERROR
    assert registry.list_with_counts() == []
