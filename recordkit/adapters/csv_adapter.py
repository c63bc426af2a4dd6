import csv
import io
import chardet
from pathlib import Path
from typing import Dict, List


class CsvAdapter:
    """Reads CSV/TSV exports into header → text dictionaries.

    Handles:
    - Encodings produced by office tools (UTF-8, UTF-8-BOM, Windows-1252, ...)
    - Comma, semicolon and tab delimiters
    - Padded header names and short rows
    """

    FALLBACK_ENCODINGS = ["cp1252", "latin-1"]

    def can_handle(self, file_path: str) -> bool:
        return Path(file_path).suffix.lower() in [".csv", ".tsv", ".txt"]

    def _detect_encoding(self, raw: bytes) -> str:
        """Detect encoding with chardet; BOM wins, UTF-8 is the default."""
        if raw.startswith(b'\xef\xbb\xbf'):
            return 'utf-8-sig'

        encoding = chardet.detect(raw).get('encoding') or 'utf-8'
        if 'utf-8' in encoding.lower() or encoding.lower() == 'ascii':
            return 'utf-8'
        return encoding

    def _decode(self, file_path: str) -> str:
        raw = Path(file_path).read_bytes()
        tried = []
        for encoding in [self._detect_encoding(raw[:10000])] + self.FALLBACK_ENCODINGS:
            try:
                return raw.decode(encoding)
            except (UnicodeDecodeError, LookupError) as e:
                tried.append(f"{encoding}: {e}")
        raise ValueError(f"Could not decode file {file_path} ({'; '.join(tried)})")

    def _detect_delimiter(self, file_path: str, sample: str) -> str:
        if Path(file_path).suffix.lower() == '.tsv':
            return '\t'
        try:
            return csv.Sniffer().sniff(sample, delimiters=',;\t').delimiter
        except csv.Error:
            first_line = sample.splitlines()[0] if sample else ''
            counts = {d: first_line.count(d) for d in (',', ';', '\t')}
            return max(counts, key=counts.get) if any(counts.values()) else ','

    def read(self, file_path: str) -> List[Dict[str, str]]:
        """Read the file and return one dictionary per data row.

        Args:
            file_path: Path to the CSV/TSV file

        Returns:
            Rows keyed by stripped header text; missing cells are ''

        Raises:
            FileNotFoundError: If file doesn't exist
            ValueError: If file cannot be decoded or parsed
        """
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")
        if path.stat().st_size == 0:
            return []

        content = self._decode(file_path)
        delimiter = self._detect_delimiter(file_path, content[:2048])

        try:
            reader = csv.reader(io.StringIO(content, newline=""), delimiter=delimiter)
            header = next(reader, None)
            if header is None:
                return []
            keys = [name.strip() for name in header]
            rows = []
            for record in reader:
                if not any(cell.strip() for cell in record):
                    continue
                padded = record + [''] * (len(keys) - len(record))
                rows.append({key: padded[i].strip() for i, key in enumerate(keys)})
            return rows
        except csv.Error as e:
            raise ValueError(f"Error parsing CSV file {file_path}: {e}")
