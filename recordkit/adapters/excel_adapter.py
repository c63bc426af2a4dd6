import openpyxl
from pathlib import Path


class ExcelAdapter:
    """Reads the first worksheet of an .xlsx workbook; row 1 holds the headers."""

    def can_handle(self, file_path):
        return Path(file_path).suffix.lower() in [".xlsx", ".xlsm"]

    def read(self, file_path):
        wb = openpyxl.load_workbook(file_path, read_only=True, data_only=True)
        try:
            ws = wb.active
            row_iter = ws.iter_rows(values_only=True)
            header_row = next(row_iter, None)
            if header_row is None:
                return []

            headers = [str(value).strip() if value is not None else "" for value in header_row]
            rows = []
            for values in row_iter:
                if all(value is None or str(value).strip() == "" for value in values):
                    continue
                rows.append(dict(zip(headers, values)))
            return rows
        finally:
            wb.close()
