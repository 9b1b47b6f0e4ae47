"""Wire schemas for the remote ticket service.

The server speaks its own field names (``pre_usuario_id``, ``uuid4``, ...);
these models map them onto the kiosk's names through aliases. Populate by
either name, dump ``by_alias=True`` when sending.
"""

from __future__ import annotations

from typing import Annotated, List, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field


def _iso_date(value):
    """Keep the YYYY-MM-DD part of a date or datetime string."""
    if isinstance(value, str) and len(value) >= 10:
        return value[:10]
    return value


def _as_text(value):
    if value is None:
        return value
    return str(value)


Text = Annotated[str, BeforeValidator(_as_text)]
IsoDate = Annotated[str, BeforeValidator(_iso_date)]


class RemoteModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RemoteUser(RemoteModel):
    external_id: int = Field(alias="pre_usuario_id")
    code: Text
    first_name: str = Field("", alias="nombres")
    last_name: str = Field("", alias="apellidos")
    birth_date: Optional[Text] = Field(None, alias="fecha_naci")


class RemoteMeal(RemoteModel):
    external_id: int = Field(alias="pre_comida_id")
    name: str = Field(alias="nombre")
    start_time: str = Field(alias="hora_inicio")
    end_time: str = Field(alias="hora_fin")
    active_flag: bool = Field(True, alias="estado")


class RemoteMealLink(RemoteModel):
    link_id: int = Field(alias="pre_comida_periodo_id")
    period_external_id: Optional[int] = Field(None, alias="pre_periodo_id")
    meal_external_id: int = Field(alias="pre_comida_id")
    hours_before_cutoff: Optional[int] = Field(None, alias="horas_antes")
    max_persons: Optional[int] = Field(None, alias="maximo_persona")
    active_flag: bool = Field(True, alias="activo")
    state_flag: bool = Field(True, alias="estado")
    subsidy_amount: Optional[Text] = Field(None, alias="subsidio")
    meal: Optional[RemoteMeal] = Field(None, alias="pre_comidas")


class RemotePeriod(RemoteModel):
    external_id: int = Field(alias="pre_periodo_id")
    name: str = Field("", alias="nombre")
    start_date: IsoDate = Field(alias="fecha_inicio")
    end_date: IsoDate = Field(alias="fecha_fin")
    active_flag: bool = Field(True, alias="estado")
    meal_links: List[RemoteMealLink] = Field(default_factory=list, alias="pre_comidas_periodo")


class RemoteTicket(RemoteModel):
    external_id: Optional[int] = Field(None, alias="pre_ticket_id")
    user_external_id: int = Field(alias="pre_usuario_id")
    meal_external_id: int = Field(alias="pre_comida_id")
    period_external_id: Optional[int] = Field(None, alias="pre_periodo_id")
    created_at: Optional[str] = Field(None, alias="create_at")
    uuid: Optional[str] = Field(None, alias="uuid4")


class TicketPayload(RemoteModel):
    """Body of the remote create-ticket call."""

    user_external_id: int = Field(alias="pre_usuario_id")
    meal_external_id: int = Field(alias="pre_comida_id")
    period_external_id: Optional[int] = Field(None, alias="pre_periodo_id")
    created_at: str = Field(alias="create_at")
    uuid: str = Field(alias="uuid4")
    estado: bool = True
    activo: bool = True
    client_estado: str = "pendiente"
