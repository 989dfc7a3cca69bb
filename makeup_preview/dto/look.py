# makeup_preview/dto/look.py
from pydantic import BaseModel, ConfigDict, Field


class LookProducts(BaseModel):
    model_config = ConfigDict(frozen=True)

    eyes: tuple[str, ...] = ()
    lips: tuple[str, ...] = ()
    face: tuple[str, ...] = ()
    brows: tuple[str, ...] = ()


class MakeupLook(BaseModel):
    """A recommended look as produced by the consultation step."""
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    why: str = ""
    products: LookProducts = Field(default_factory=LookProducts)
