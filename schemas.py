from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

# Color picker value ("#1a2b3c", also "#abc" or "rgb(0,0,0)") or an RGB triple in [0, 1].
ColorValue = Union[str, tuple[float, float, float]]


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Position(_CamelModel):
    x: float
    y: float
    page: int = 1


class FontSettings(_CamelModel):
    name_font: str | None = Field(None, alias="nameFont")
    type_font: str | None = Field(None, alias="typeFont")
    name_font_size: float | None = Field(None, alias="nameFontSize", gt=0)
    type_font_size: float | None = Field(None, alias="typeFontSize", gt=0)
    name_color: ColorValue | None = Field(None, alias="nameColor")
    type_color: ColorValue | None = Field(None, alias="typeColor")


class TextElement(_CamelModel):
    id: str
    text: str | None = None
    column: str | None = None
    x: float
    y: float
    page: int = 1
    font_family: str | None = Field(None, alias="fontFamily")
    font_size: float | None = Field(None, alias="fontSize", gt=0)
    color: ColorValue | None = None

    @model_validator(mode="after")
    def _needs_content(self) -> "TextElement":
        if self.text is None and not self.column:
            raise ValueError(f"Text element '{self.id}' needs either 'text' or 'column'.")
        return self


class CanvasSpace(_CamelModel):
    """How positions in a job were captured.

    "pdf" positions are used as-is. "canvas" positions were taken from the
    on-screen preview and are converted once with canvas_height/render_scale.
    """

    coordinate_space: Literal["pdf", "canvas"] = Field("pdf", alias="coordinateSpace")
    canvas_height: float | None = Field(None, alias="canvasHeight", gt=0)
    render_scale: float | None = Field(None, alias="renderScale", gt=0)

    @model_validator(mode="after")
    def _canvas_needs_height(self) -> "CanvasSpace":
        if self.coordinate_space == "canvas" and self.canvas_height is None:
            raise ValueError("canvasHeight is required when coordinateSpace is 'canvas'.")
        return self


class TwoFieldJob(CanvasSpace):
    mode: Literal["two_field"] = "two_field"
    name_column: str = Field(alias="nameColumn", min_length=1)
    type_column: str = Field(alias="typeColumn", min_length=1)
    name_position: Position = Field(alias="namePosition")
    type_position: Position = Field(alias="typePosition")
    font_settings: FontSettings = Field(default_factory=FontSettings, alias="fontSettings")


class ElementListJob(CanvasSpace):
    mode: Literal["element_list"] = "element_list"
    text_elements: list[TextElement] = Field(alias="textElements", min_length=1)
    name_column: str | None = Field(None, alias="nameColumn")

    @field_validator("name_column")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        return value or None


GenerationRequest = Annotated[Union[TwoFieldJob, ElementListJob], Field(discriminator="mode")]

generation_request_adapter: TypeAdapter[TwoFieldJob | ElementListJob] = TypeAdapter(GenerationRequest)


class DeleteRequest(BaseModel):
    name: str = Field(min_length=1)
    type: str = Field(min_length=1)
