from channel_bridge.schemas.delivery import TemplateParams
from channel_bridge.services.agent.base import AgentReply
from channel_bridge.services.template_directive import parse_template_directive


class TestParseTemplateDirective:
    def test_directive_becomes_template(self):
        reply = parse_template_directive(AgentReply(text="[[template: welcome | Ana | 10h]]"))

        assert reply.text is None
        assert reply.template.name == "welcome"
        assert reply.template.variables == ["Ana", "10h"]
        assert reply.template.language == "pt_BR"

    def test_surrounding_text_is_kept_and_blocks_removed(self):
        reply = parse_template_directive(
            AgentReply(text="Hi!\n[[TEMPLATE: reminder|Ana]]\nSee you [[template: extra]]"),
            language="en_US",
        )

        assert reply.template.name == "reminder"
        assert reply.template.language == "en_US"
        assert "[[" not in reply.text
        assert reply.text.startswith("Hi!")

    def test_plain_text_untouched(self):
        original = AgentReply(text="No directive here")
        assert parse_template_directive(original) is original

    def test_explicit_template_wins(self):
        explicit = TemplateParams(name="given", language="en_US")
        original = AgentReply(text="[[template: other]]", template=explicit)
        assert parse_template_directive(original) is original

    def test_empty_directive_ignored(self):
        original = AgentReply(text="[[template:  |  ]]")
        assert parse_template_directive(original) is original

    def test_idempotency_key_carried(self):
        reply = parse_template_directive(AgentReply(text="[[template: t]]", idempotency_key="k1"))
        assert reply.idempotency_key == "k1"
