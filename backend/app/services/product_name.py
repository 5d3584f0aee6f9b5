"""
Normalizacao de nomes de produtos e separacao nome/unidade.

Os textos das fontes misturam nome, embalagem e localidade, por exemplo
"Alho Comum Cx 10Kg Juazeiro (BA)". Este modulo limpa o nome para uso como
chave de busca e extrai a unidade ("Cx 10 Kg") quando ela vem no final.
"""
import re
from dataclasses import dataclass
from typing import List, Optional

UNIT_WORDS = [
    "cx",
    "sc",
    "kg",
    "g",
    "l",
    "lt",
    "un",
    "unid",
    "maço",
    "maco",
    "dúzia",
    "duzia",
    "dz",
]

STOPWORDS = [
    "produtor",
    "produtora",
    "produtores",
    "produtoras",
    "beneficiador",
    "beneficiadora",
    "beneficiadores",
    "beneficiadoras",
    "beneficiado",
    "beneficiados",
    "beneficiada",
    "beneficiadas",
    "tipo",
    "tipos",
    "e",
    "primeira",
    "segunda",
]

# Cidades que aparecem coladas no nome do produto
LOCATION_TOKENS = ["juazeiro"]

NUMBER = r"\d+(?:[.,]\d+)?"

RX_NUMBER = re.compile(rf"^{NUMBER}$")
RX_NUM_WITH_SUFFIX = re.compile(rf"^{NUMBER}\s*(?:kg|g|l|lt)$", re.IGNORECASE)
RX_UNIT_WORD = re.compile(r"^(?:%s|mo-\d{1,2})$" % "|".join(UNIT_WORDS), re.IGNORECASE)
RX_GLUED = re.compile(rf"^(Cx|Sc)({NUMBER})Kg$", re.IGNORECASE)

RX_PARENS = re.compile(r"\([^)]*\)")
RX_ORDINAL_NUMBER = re.compile(r"\b\d+[ºª]?(?!\w)")
RX_GLUED_NUMBER_UNIT = re.compile(rf"\b{NUMBER}\s*(?:kg|g|lt|l)\b", re.IGNORECASE)
RX_PUNCTUATION = re.compile(r"[|:–—\-ºª°]")
RX_STOPWORDS = re.compile(r"\b(?:%s)\b" % "|".join(STOPWORDS), re.IGNORECASE)
RX_UNIT_STOPWORDS = re.compile(r"\b(?:%s)\b" % "|".join(UNIT_WORDS), re.IGNORECASE)
RX_NON_LETTER = re.compile(r"[^\w\s]|[\d_]")

RX_LOCATION_PAIR = re.compile(
    r"\b(?:%s)\s*\(\s*[A-Z]{2}\s*\)" % "|".join(LOCATION_TOKENS), re.IGNORECASE
)
RX_TRAILING_UF = re.compile(r"\(\s*[A-Z]{2}\s*\)\s*$", re.IGNORECASE)
RX_TRAILING_CITY = re.compile(r"\b(?:%s)\b\s*$" % "|".join(LOCATION_TOKENS), re.IGNORECASE)

CANONICAL_ABBREVIATIONS = [
    (re.compile(r"\bcx\b", re.IGNORECASE), "Cx"),
    (re.compile(r"\bsc\b", re.IGNORECASE), "Sc"),
    (re.compile(r"\bkg\b", re.IGNORECASE), "Kg"),
    (re.compile(r"\bg\b", re.IGNORECASE), "g"),
    (re.compile(r"\blt\b", re.IGNORECASE), "Lt"),
    (re.compile(r"\bl\b", re.IGNORECASE), "L"),
    (re.compile(r"\bunid\b", re.IGNORECASE), "Unid"),
    (re.compile(r"\bun\b", re.IGNORECASE), "Un"),
]


@dataclass
class SplitResult:
    name: str
    unit: Optional[str]


def normalize_spaces(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def strip_location_suffix(text: str) -> str:
    """Remove sufixos de localidade: "Juazeiro (BA)", "(BA)" no final, "Juazeiro" no final."""
    text = RX_LOCATION_PAIR.sub(" ", text or "")
    text = RX_TRAILING_UF.sub(" ", text)
    text = RX_TRAILING_CITY.sub(" ", text)
    return normalize_spaces(text)


def strip_location(raw: str, location: Optional[str] = None) -> str:
    """
    Remove do texto do produto a localidade informada pela fonte
    (ex.: coluna "Local" do Agrolink) e os sufixos de localidade comuns.
    """
    text = raw or ""
    if location and location.strip():
        text = re.sub(rf"\s*{re.escape(location.strip())}\s*", " ", text, count=1, flags=re.IGNORECASE)
    return strip_location_suffix(text)


def clean_product_name(raw: str) -> str:
    """
    Limpa o nome de um produto para uso como chave de busca.

    Remove parenteses, numeros e ordinais, stopwords de classificacao
    ("produtor", "tipo", "primeira"...), palavras de unidade e qualquer
    caractere que nao seja letra. Letras acentuadas sao mantidas.

    Se a limpeza eliminar tudo, devolve o original com espacos normalizados;
    so retorna "" quando a entrada e vazia.
    """
    if not raw:
        return ""

    original = normalize_spaces(raw)
    text = original

    text = RX_PARENS.sub(" ", text)
    text = RX_GLUED_NUMBER_UNIT.sub(" ", text)
    text = RX_ORDINAL_NUMBER.sub(" ", text)
    text = RX_PUNCTUATION.sub(" ", text)
    # Digitos e "_" saem antes das palavras inteiras: "Tipo2" -> "Tipo"
    text = RX_NON_LETTER.sub(" ", text)
    text = RX_STOPWORDS.sub(" ", text)
    text = RX_UNIT_STOPWORDS.sub(" ", text)
    text = normalize_spaces(text)

    if not text:
        return original

    return text


def sanitize_product_name_for_db(raw: str) -> Optional[str]:
    """
    Nome como gravado no banco: limpo e em maiusculas.
    Retorna None quando nao sobra nada (o chamador descarta a linha).
    """
    cleaned = normalize_spaces(clean_product_name(raw or "")).upper()
    return cleaned or None


def normalize_unit(unit: Optional[str]) -> Optional[str]:
    """Padroniza a unidade: "cx20kg" -> "Cx 20 Kg", "10kg" -> "10 Kg"."""
    if not unit:
        return None

    text = re.sub(r"[()]", " ", unit)
    text = re.sub(r"[^\w\s.,\-]|_", " ", text)
    text = normalize_spaces(text)
    if not text:
        return None

    # Casos grudados: Cx20Kg, Sc 15kg
    text = re.sub(
        rf"\b(Cx|Sc)\s*({NUMBER})\s*(Kg)?\b",
        lambda m: f"{m.group(1)} {m.group(2)}" + (" Kg" if m.group(3) else ""),
        text,
        flags=re.IGNORECASE,
    )
    # 20Kg -> 20 Kg
    text = re.sub(rf"({NUMBER})\s*(Kg)\b", r"\1 \2", text, flags=re.IGNORECASE)

    for pattern, canonical in CANONICAL_ABBREVIATIONS:
        text = pattern.sub(canonical, text)

    return normalize_spaces(text)


def _is_unit_token(token: str) -> bool:
    return bool(
        RX_NUM_WITH_SUFFIX.match(token)
        or RX_UNIT_WORD.match(token)
        or RX_NUMBER.match(token)
    )


def split_product_label(raw: str) -> SplitResult:
    """
    Separa nome e unidade varrendo os tokens de tras para frente.

    Ex.: "Alho Comum Cx 10Kg Juazeiro (BA)" -> SplitResult("Alho Comum", "Cx 10 Kg")
    """
    if not raw:
        return SplitResult(name="", unit=None)

    text = strip_location_suffix(raw)
    if not text:
        return SplitResult(name="", unit=None)

    tokens = text.split(" ")
    unit_tokens: List[str] = []

    for index in range(len(tokens) - 1, -1, -1):
        token = tokens[index]

        glued = RX_GLUED.match(token)
        if glued:
            unit_tokens[:0] = [glued.group(1), f"{glued.group(2)}Kg"]
            continue

        if _is_unit_token(token):
            unit_tokens.insert(0, token)
            continue

        raw_name = " ".join(tokens[: index + 1])
        unit = normalize_unit(" ".join(unit_tokens)) if unit_tokens else None
        return SplitResult(name=clean_product_name(raw_name), unit=unit)

    # Somente tokens de unidade: nao ha nome separavel
    return SplitResult(name=clean_product_name(text), unit=None)
