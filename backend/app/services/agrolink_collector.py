"""
Coletor de cotacoes do Agrolink (fallback do boletim AMA).

O site renderiza o preco de cada linha da tabela como imagem/texto protegido,
entao o valor e lido com OCR sobre um recorte da celula de preco.
"""
import asyncio
import io
import logging
import re
from dataclasses import dataclass, asdict
from typing import List, Optional, Protocol

import pytesseract
from PIL import Image, ImageOps
from playwright.async_api import async_playwright, Browser, Playwright, Page, TimeoutError as PlaywrightTimeout

from app.core.config import settings
from app.services.product_name import normalize_spaces, split_product_label

logger = logging.getLogger(__name__)

ROW_SELECTOR = "table.table-main tbody tr"
PRICE_CELL_SELECTOR = "td:nth-child(3) div.text-right.float-right"

OCR_SCALE = 3
OCR_RETRY_SCALE = 4
OCR_THRESHOLD = 180
OCR_WHITELIST = "0123456789.,"


class AgrolinkCollectionError(Exception):
    """A tabela de cotacoes do Agrolink nao pode ser lida"""


@dataclass
class AgrolinkItem:
    raw_label: str       # texto original, ex: "Alho Comum Cx 10Kg Juazeiro (BA)"
    name: str            # apenas o nome
    unit: Optional[str]  # unidade normalizada (ex: "Cx 10 Kg") ou None
    location: str
    price: str           # "62,80"
    date: str            # "dd/mm/yyyy"

    def to_dict(self) -> dict:
        return asdict(self)


class DigitRecognizer(Protocol):
    def recognize_digits(self, image: Image.Image) -> str:
        ...


class TesseractDigitRecognizer:
    """OCR restrito a digitos e separadores"""

    def __init__(self, tesseract_cmd: Optional[str] = None):
        tesseract_cmd = tesseract_cmd or settings.TESSERACT_CMD
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    def recognize_digits(self, image: Image.Image) -> str:
        config = f"--psm 7 -c tessedit_char_whitelist={OCR_WHITELIST} -c preserve_interword_spaces=1"
        return pytesseract.image_to_string(image, lang="eng", config=config)


def preprocess_price_image(png_bytes: bytes, scale: int = OCR_SCALE) -> Image.Image:
    """Tons de cinza, binarizacao e ampliacao para melhorar o OCR"""
    image = Image.open(io.BytesIO(png_bytes))
    image = ImageOps.grayscale(image)
    image = image.point(lambda p: 255 if p > OCR_THRESHOLD else 0)
    width, height = image.size
    return image.resize((max(width, 1) * scale, max(height, 1) * scale), Image.LANCZOS)


def normalize_ocr_price(text: str) -> str:
    """
    Converte o texto do OCR em preco com virgula decimal.
    "62.80" -> "62,80"; "6280" -> "62,80"; "" -> ""
    """
    cleaned = re.sub(r"[^\d.,]", "", text or "")
    if not re.search(r"\d", cleaned):
        return ""

    if "," in cleaned:
        # "1.234,56": pontos sao milhar
        return cleaned.replace(".", "")

    if "." in cleaned:
        integer, _, cents = cleaned.rpartition(".")
        return f"{integer.replace('.', '')},{cents}"

    if len(cleaned) >= 3:
        return f"{int(cleaned[:-2])},{cleaned[-2:]}"

    return cleaned


async def read_price(png_bytes: bytes, recognizer: DigitRecognizer) -> str:
    """
    OCR do recorte do preco. Se a primeira leitura falhar ou vier vazia,
    tenta uma unica vez com ampliacao maior. Retorna "" se nada for lido.
    """
    for scale in (OCR_SCALE, OCR_RETRY_SCALE):
        try:
            image = preprocess_price_image(png_bytes, scale)
            text = await asyncio.to_thread(recognizer.recognize_digits, image)
        except Exception as e:
            logger.debug(f"[Agrolink] OCR falhou (escala {scale}): {e}")
            continue

        price = normalize_ocr_price(text.strip())
        if price:
            return price

    return ""


class AgrolinkCollector:
    """
    Navega na tabela de cotacoes do Agrolink e le o preco de cada linha da
    localidade alvo via OCR. Linhas sao processadas uma a uma.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        locality: Optional[str] = None,
        recognizer: Optional[DigitRecognizer] = None,
        headless: bool = True,
        timeout: Optional[int] = None,
        table_timeout: Optional[int] = None,
    ):
        self.url = url or settings.AGROLINK_URL
        self.locality = locality or settings.AGROLINK_LOCALITY
        self.recognizer = recognizer or TesseractDigitRecognizer()
        self.headless = headless
        self.timeout = timeout or settings.BROWSER_TIMEOUT_MS
        self.table_timeout = table_timeout or settings.TABLE_WAIT_TIMEOUT_MS
        self.browser: Optional[Browser] = None
        self.playwright: Optional[Playwright] = None
        self.page: Optional[Page] = None

    async def __aenter__(self):
        self.playwright = await async_playwright().start()
        self.browser = await self.playwright.chromium.launch(
            headless=self.headless,
            args=[
                '--no-sandbox',
                '--disable-setuid-sandbox',
                '--disable-dev-shm-usage',
            ]
        )
        context = await self.browser.new_context(
            viewport={"width": 1280, "height": 1200},
            device_scale_factor=3,
            user_agent='Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
            locale='pt-BR',
        )
        self.page = await context.new_page()
        self.page.set_default_timeout(self.timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.page:
            await self.page.close()
        if self.browser:
            await self.browser.close()
        if self.playwright:
            await self.playwright.stop()

    async def collect(self) -> List[AgrolinkItem]:
        if not self.page:
            raise RuntimeError("Browser not initialized. Use 'async with AgrolinkCollector()' context manager.")

        await self.page.goto(self.url, wait_until="networkidle", timeout=self.timeout)
        try:
            await self.page.wait_for_selector(ROW_SELECTOR, timeout=self.table_timeout)
        except PlaywrightTimeout as e:
            raise AgrolinkCollectionError(f"Tabela de cotações não carregou em {self.url}") from e

        rows = await self.page.query_selector_all(ROW_SELECTOR)
        logger.info(f"[Agrolink] {len(rows)} linhas na tabela")

        items: List[AgrolinkItem] = []
        for row in rows:
            cells = await row.query_selector_all("td")
            if len(cells) < 4:
                continue

            raw_label = normalize_spaces(await cells[0].inner_text())
            location = normalize_spaces(await cells[1].inner_text())
            updated_at = normalize_spaces(await cells[3].inner_text())
            if self.locality.lower() not in location.lower():
                continue

            price_cell = await row.query_selector(PRICE_CELL_SELECTOR)
            if not price_cell:
                continue

            box = await price_cell.bounding_box()
            if not box:
                continue

            screenshot = await self.page.screenshot(clip={
                "x": max(box["x"], 0),
                "y": max(box["y"], 0),
                "width": box["width"],
                "height": box["height"],
            })

            price = await read_price(screenshot, self.recognizer)
            if not price:
                logger.debug(f"[Agrolink] OCR sem preço para '{raw_label}', linha ignorada")
                continue

            split = split_product_label(raw_label)
            items.append(AgrolinkItem(
                raw_label=raw_label,
                name=split.name,
                unit=split.unit,
                location=location,
                price=price,
                date=updated_at,
            ))

        logger.info(f"[Agrolink] {len(items)} itens coletados para '{self.locality}'")
        return items


async def collect_agrolink_quotes(url: Optional[str] = None) -> List[AgrolinkItem]:
    """Abre o browser, coleta a tabela e fecha"""
    async with AgrolinkCollector(url=url) as collector:
        return await collector.collect()
