from typing import Optional, Sequence

from .config import DEFAULT_LANGUAGE
from .errors import InvalidInputError
from .models import PlaceCandidate

SCHEMA_TEMPLATE = """{
  "metadata": {
    "titulo": "",
    "descripcion_general": "",
    "total_duracion": "",
    "total_distancia": "",
    "coordenada_start": "",
    "coordenada_end": ""
  },
  "lugares": {
    "<id>": {
      "nombre": "",
      "costo_promedio": "",
      "recomendaciones": "",
      "notas": "",
      "coordenadas": ""
    }
  }
}"""


def _single_line(text: str) -> str:
    return " ".join((text or "").split())


def format_destinations(places: Sequence[PlaceCandidate]) -> str:
    lines = []
    for index, place in enumerate(places, start=1):
        name = _single_line(place.name)
        description = _single_line(place.description)
        lines.append(f"{index}. {name} ({description})")
    return "\n".join(lines)


def build_prompt(
    places: Sequence[PlaceCandidate],
    preference_summary: str,
    language: str = DEFAULT_LANGUAGE,
    recommended_type: Optional[str] = None,
) -> str:
    if not places:
        raise InvalidInputError("At least one place is required to compose a prompt")
    count = len(places)
    sections = [
        f"Tenemos que visitar estos destinos:\n{format_destinations(places)}",
        f"Toma en cuenta estas respuestas para elegir el mejor orden: {_single_line(preference_summary)}",
    ]
    if recommended_type:
        sections.append(f"Tipo de lugar recomendado para este usuario: {_single_line(recommended_type)}")
    sections.append(
        "Devuelve solo un JSON valido, sin texto extra, con la estructura exacta:\n\n" + SCHEMA_TEMPLATE
    )
    sections.append(
        "reglas:\n"
        f"- El numero de entradas dentro de \"lugares\" debe ser exactamente {count}, uno por destino.\n"
        f"- Usa ids numericos consecutivos empezando en 1 (1 a {count}) siguiendo la ruta mas eficiente.\n"
        "- Rellena cada campo con datos sintetizados segun la mejor ruta.\n"
        f"- Solo puede responder en {language}.\n"
        "- La salida debe ser solo el JSON, sin bloques de codigo ni texto adicional."
    )
    return "\n\n".join(sections)
