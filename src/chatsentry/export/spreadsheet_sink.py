"""Hourly Excel workbooks of stored chat messages.

One workbook per local hour (YYYY-MM-DD_HH.xlsx). A workbook is created
with its header row on first use and only ever appended to afterwards.
"""

from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple
import structlog

from openpyxl import Workbook, load_workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.styles import Font, PatternFill

from chatsentry import PersistenceError
from chatsentry.core.models import SheetRecord
from chatsentry.utils.files import atomic_write


HEADERS: Dict[str, Tuple[str, ...]] = {
    "en": ("ID", "Nickname", "Time", "Content", "Topic", "Sentiment",
           "Alert", "Extracted At", "Screenshot"),
    "zh": ("ID", "昵称", "消息时间", "消息内容", "话题", "情感",
           "是否警报", "提取时间", "截图路径"),
    "ja": ("ID", "ニックネーム", "時刻", "内容", "トピック", "感情",
           "アラート", "抽出時刻", "スクリーンショット"),
}

YES_NO: Dict[str, Tuple[str, str]] = {
    "en": ("Yes", "No"),
    "zh": ("是", "否"),
    "ja": ("はい", "いいえ"),
}

COLUMN_WIDTHS = (10, 20, 12, 60, 12, 12, 10, 22, 50)
SHEET_TITLE = "Messages"


def clean_cell(value):
    """Drop control characters openpyxl refuses to write."""
    if isinstance(value, str):
        return ILLEGAL_CHARACTERS_RE.sub("", value)
    return value


def hour_bucket(moment: datetime) -> str:
    """Name of the hourly bucket a moment falls into."""
    return moment.strftime("%Y-%m-%d_%H")


class SpreadsheetSink:
    """Maintains one append-only workbook per calendar hour."""

    def __init__(self, excel_dir: Path, locale: str = "en",
                 logger: Optional[structlog.BoundLogger] = None):
        """Initialize the spreadsheet sink.

        Args:
            excel_dir: Directory holding the hourly workbooks
            locale: Language for the header row and the yes/no alert flag
            logger: Structured logger for operation tracking
        """
        self.logger = logger or structlog.get_logger(__name__)
        self.excel_dir = Path(excel_dir)
        self.locale = locale if locale in HEADERS else "en"
        self.rows_written = 0
        self.write_failures = 0

    @property
    def headers(self) -> Tuple[str, ...]:
        return HEADERS[self.locale]

    def path_for(self, hour: datetime) -> Path:
        return self.excel_dir / f"{hour_bucket(hour)}.xlsx"

    def _new_workbook(self) -> Workbook:
        workbook = Workbook()
        worksheet = workbook.active
        worksheet.title = SHEET_TITLE
        worksheet.append(list(self.headers))

        header_font = Font(bold=True)
        header_fill = PatternFill(fill_type='solid', fgColor='FFE0E0E0')
        for cell in worksheet[1]:
            cell.font = header_font
            cell.fill = header_fill
        for index, width in enumerate(COLUMN_WIDTHS):
            worksheet.column_dimensions[chr(ord('A') + index)].width = width
        worksheet.freeze_panes = 'A2'
        return workbook

    def _row(self, record: SheetRecord) -> List:
        yes, no = YES_NO[self.locale]
        message = record.message
        return [clean_cell(value) for value in (
            message.id,
            message.nickname,
            message.message_time,
            message.content,
            message.topic.value,
            message.sentiment.value,
            yes if record.alerted else no,
            message.extracted_at,
            message.screenshot_path
        )]

    def ensure_hourly_sheet(self, hour: Optional[datetime] = None) -> Optional[Path]:
        """Create the workbook for an hour with just its header row, if missing.

        Idempotent: an existing workbook is never overwritten.

        Returns:
            Path of the workbook, or None if it could not be created
        """
        hour = hour or datetime.now()
        path = self.path_for(hour)
        if path.exists():
            return path

        workbook = self._new_workbook()
        try:
            atomic_write(path, workbook.save)
        except PersistenceError as e:
            self.write_failures += 1
            self.logger.error("Failed to create hourly sheet", file=str(path), error=str(e))
            return None

        self.logger.info("Hourly sheet created", file=str(path))
        return path

    def append_records(self, records: Iterable[SheetRecord], hour: Optional[datetime] = None) -> bool:
        """Append one row per record, in order, to the hour's workbook.

        The workbook is read, extended and written back in full. There is
        no retry queue: on failure the rows are logged as lost for this file.

        Returns:
            True if the rows were written (or there was nothing to write)
        """
        records = list(records)
        if not records:
            return True

        hour = hour or datetime.now()
        path = self.ensure_hourly_sheet(hour)
        if path is None:
            self.logger.error("Rows not written, hourly sheet unavailable", rows=len(records))
            return False

        try:
            workbook = load_workbook(path)
            worksheet = workbook[SHEET_TITLE] if SHEET_TITLE in workbook.sheetnames else workbook.active
            for record in records:
                worksheet.append(self._row(record))
            atomic_write(path, workbook.save)
        except Exception as e:
            self.write_failures += 1
            self.logger.error("Failed to append to hourly sheet", file=str(path),
                            rows=len(records), error=str(e))
            return False

        self.rows_written += len(records)
        self.logger.info("Rows appended to hourly sheet", file=str(path), rows=len(records))
        return True

    def get_stats(self) -> Dict[str, object]:
        return {
            'rows_written': self.rows_written,
            'write_failures': self.write_failures,
            'excel_dir': str(self.excel_dir)
        }
