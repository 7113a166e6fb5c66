"""
CSV reader using Spark for batch imports.

The header row is read as data (header=false) so vendor headers reach the
field normalizer exactly as written, duplicates included. Every column is a
string; typing is the validator's job. Rows are streamed to the driver one
partition at a time with toLocalIterator().
"""

import os
from collections.abc import Iterator
from pathlib import Path

from pyspark.sql import DataFrame, SparkSession

from inventory_pipeline.core.exceptions import UploadRejectedError
from inventory_pipeline.observability.logger import get_logger

logger = get_logger(__name__)

ACCEPTED_CONTENT_TYPES = frozenset({
    "text/csv",
    "application/csv",
    "text/comma-separated-values",
    "application/vnd.ms-excel",
})

ACCEPTED_EXTENSIONS = frozenset({".csv"})


def check_upload(path: str, content_type: str | None = None, original_filename: str | None = None) -> int:
    """
    Reject unusable uploads before anything is parsed.

    Args:
        path: Location of the uploaded file
        content_type: MIME type declared by the uploader, if any
        original_filename: Name as uploaded; defaults to the path's name

    Returns:
        File size in bytes

    Raises:
        UploadRejectedError: Wrong type, missing or empty file
    """
    name = original_filename or Path(path).name

    if content_type is not None:
        base_type = content_type.split(";", 1)[0].strip().lower()
        if base_type not in ACCEPTED_CONTENT_TYPES:
            raise UploadRejectedError(name, f"content type {content_type!r} is not CSV")

    if Path(name).suffix.lower() not in ACCEPTED_EXTENSIONS:
        raise UploadRejectedError(name, "only .csv files are accepted")

    if not os.path.isfile(path):
        raise UploadRejectedError(name, "file does not exist")

    size = os.path.getsize(path)
    if size == 0:
        raise UploadRejectedError(name, "file is empty")
    return size


class CSVSource:
    """
    A parsed upload: header row, data row count and a row stream.

    Row numbers are 1-based positions among data rows (the header is not
    counted).
    """

    def __init__(self, df: DataFrame, path: str, original_filename: str, file_size: int):
        self._df = df
        self.path = path
        self.original_filename = original_filename
        self.file_size = file_size

        first = df.first()
        if first is None:
            raise UploadRejectedError(original_filename, "file has no header row")
        self.headers: list[str] = ["" if cell is None else str(cell) for cell in first]

        self.total_rows: int = df.count() - 1
        if self.total_rows <= 0:
            raise UploadRejectedError(original_filename, "file has a header but no data rows")

    def iter_rows(self, start: int = 0) -> Iterator[list[str]]:
        """
        Yield data rows as cell lists, skipping the first `start` data rows.

        Args:
            start: Data rows to skip (0 reads from the first data row)
        """
        skip = start + 1
        for index, row in enumerate(self._df.toLocalIterator(prefetchPartitions=False)):
            if index < skip:
                continue
            yield ["" if cell is None else str(cell) for cell in row]


class CSVReader:
    """
    Reads CSV uploads with Spark, all columns as strings.
    """

    def __init__(self, spark: SparkSession):
        """
        Initialize CSV reader.

        Args:
            spark: Active Spark session
        """
        self.spark = spark

    def read(self, file_path: str, delimiter: str = ",", multi_line: bool = False) -> DataFrame:
        """
        Read a CSV file into a DataFrame of string columns, header row included.

        Args:
            file_path: Path to CSV file
            delimiter: Field delimiter
            multi_line: Allow quoted values spanning lines (reads the file as
                one partition)
        """
        return (
            self.spark.read
            .option("header", "false")
            .option("inferSchema", "false")
            .option("delimiter", delimiter)
            .option("quote", '"')
            .option("escape", '"')
            .option("multiLine", str(multi_line).lower())
            .option("mode", "PERMISSIVE")
            .option("encoding", "UTF-8")
            .csv(file_path)
        )

    def open(
        self,
        file_path: str,
        content_type: str | None = None,
        original_filename: str | None = None,
        **read_options,
    ) -> CSVSource:
        """
        Check an upload and open it as a row source.

        Raises:
            UploadRejectedError: If the upload is not a usable CSV file
        """
        name = original_filename or Path(file_path).name
        size = check_upload(file_path, content_type, name)
        df = self.read(file_path, **read_options)
        source = CSVSource(df, file_path, name, size)
        logger.info(
            f"Opened upload {name}: {source.total_rows} data rows, {len(source.headers)} columns",
            extra={"file_name": name, "total_rows": source.total_rows, "file_size": size},
        )
        return source
