from typing import Optional

from pydantic import AliasChoices, BaseModel, Field


class TemplateParams(BaseModel):
    name: str = Field(min_length=1)
    language: str = Field(min_length=1)
    variables: list[str] = []
    header_image_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("header_image_url", "headerImageUrl"),
    )

    def mirror_text(self) -> str:
        """Summary posted to the monitoring inbox in place of the template body."""
        summary = f" | vars: {', '.join(self.variables)}" if self.variables else ""
        return f"[Template: {self.name}{summary}]"


class TemplateSendRequest(BaseModel):
    to: str = Field(min_length=1)
    template: TemplateParams
    idempotency_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("idempotencyKey", "idempotency_key"),
    )


class SendRequest(BaseModel):
    to: str = Field(min_length=1)
    text: Optional[str] = None
    media_url: Optional[str] = Field(default=None, validation_alias=AliasChoices("mediaUrl", "media_url"))
    template: Optional[TemplateParams] = None
    idempotency_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("idempotencyKey", "idempotency_key"),
    )


class DeliveryResponse(BaseModel):
    ok: bool
    channel: Optional[str] = None
    messageId: Optional[str] = None
    deduplicated: bool = False
    error: Optional[str] = None
