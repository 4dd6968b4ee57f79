import re
import sys
import pandas as pd
from pathlib import Path
from common.models import Job


JOB_LINE_PATTERN = re.compile(
    r"^\s*JobId:\s*(?P<id>-?\d+)"
    r"\s+Arrival Day:\s*(?P<arrival_day>-?\d+)"
    r"\s+Time Hour:\s*(?P<arrival_hour>-?\d+)"
    r"\s+MemReq:\s*(?P<memory_required>-?\d+)"
    r"\s+CPURe[gq]:\s*(?P<CPUs_required>-?\d+)"  # The generator writes "CPUReg"
    r"\s+ExeTime:\s*(?P<execution_time>-?\d+)\s*$"
)

JOB_COLUMNS = ['job_id', 'arrival_day', 'arrival_hour', 'memory_required', 'CPUs_required', 'execution_time']


class JobParseError(ValueError):
    """Raised for a job record that cannot be turned into a valid Job."""

    def __init__(self, message, line_number=None, line=None, row=None):
        self.line_number = line_number
        self.line = line
        self.row = row
        if line_number is not None:
            location = f"line {line_number}: "
        elif row is not None:
            location = f"row {row}: "
        else:
            location = ""
        super().__init__(f"{location}{message}" + (f" ({line!r})" if line is not None else ""))


def validate_job_values(values, line_number=None, line=None, row=None):
    """
    Checks the numeric fields of a job record.
    Demands and execution time must be positive, arrival stamps must be non-negative
    with the hour in 0-23.
    """
    for field in ('memory_required', 'CPUs_required', 'execution_time'):
        if values[field] <= 0:
            raise JobParseError(f"{field} must be positive, got {values[field]}", line_number, line, row)
    if values['arrival_day'] < 0:
        raise JobParseError(f"arrival_day must not be negative, got {values['arrival_day']}", line_number, line, row)
    if not 0 <= values['arrival_hour'] < 24:
        raise JobParseError(f"arrival_hour must be in 0-23, got {values['arrival_hour']}", line_number, line, row)


def parse_job_line(line, line_number=None):
    """
    Parse a job description such as:
      JobId: 7 Arrival Day: 0 Time Hour: 3 MemReq: 8 CPUReg: 4 ExeTime: 2
    """
    match = JOB_LINE_PATTERN.match(line)
    if match is None:
        raise JobParseError("malformed job record", line_number, line.rstrip("\n"))

    values = {key: int(value) for key, value in match.groupdict().items()}
    validate_job_values(values, line_number, line.rstrip("\n"))
    return Job(**values)


def read_job_file(input_file):
    """Read a job text file, one job per line, skipping blank lines"""
    input_path = Path(input_file)
    if not input_path.exists():
        raise FileNotFoundError(f"Job file not found: {input_file}")

    jobs = []
    with open(input_path, 'r') as f:
        for line_number, line in enumerate(f, start=1):
            if not line.strip():
                continue
            jobs.append(parse_job_line(line, line_number))
    return jobs


def jobs_to_dataframe(jobs):
    return pd.DataFrame([
        {
            'job_id': job.id,
            'arrival_day': job.arrival_day,
            'arrival_hour': job.arrival_hour,
            'memory_required': job.memory_required,
            'CPUs_required': job.CPUs_required,
            'execution_time': job.execution_time,
        }
        for job in jobs], columns=JOB_COLUMNS)


def load_jobs(df):
    """
    Given a dataframe of job records, convert each row into a Job.
    Missing columns or empty cells are rejected rather than defaulted.
    """
    missing = [column for column in JOB_COLUMNS if column not in df.columns]
    if missing:
        raise JobParseError(f"job table is missing columns {missing}")

    jobs = []
    for i, row in df.iterrows():
        if row[JOB_COLUMNS].isna().any():
            raise JobParseError(f"has empty fields: {row[JOB_COLUMNS].to_dict()}", row=i)
        values = {column: integer_cell(row[column], column, i) for column in JOB_COLUMNS}
        values['id'] = values.pop('job_id')
        validate_job_values(values, row=i)
        jobs.append(Job(**values))
    return jobs


def integer_cell(value, column, row):
    """Whole numbers only, 4.0 is accepted but 4.7 or 'lots' are not truncated or guessed"""
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise JobParseError(f"{column} is not a number: {value!r}", row=row) from None
    if not number.is_integer():
        raise JobParseError(f"{column} must be a whole number, got {value!r}", row=row)
    return int(number)


def load_job_source(input_file):
    """Load jobs from a .txt job file or a converted .parquet file"""
    input_path = Path(input_file)
    if input_path.suffix == ".parquet":
        if not input_path.exists():
            raise FileNotFoundError(f"Job file not found: {input_file}")
        return load_jobs(pd.read_parquet(input_path))
    return read_job_file(input_path)


def convert_to_parquet(input_file, output_file):
    jobs = read_job_file(input_file)
    df = jobs_to_dataframe(jobs)
    df.to_parquet(output_file, index=False, engine="pyarrow", compression="snappy")
    return df


if __name__ == "__main__":
    input_file = sys.argv[1] if len(sys.argv) > 1 else "jobs.txt"
    output_file = sys.argv[2] if len(sys.argv) > 2 else str(Path(input_file).with_suffix(".parquet"))

    df = convert_to_parquet(input_file, output_file)

    print(f"\nDataFrame shape: {df.shape}")
    print(df.head())
    print(f"Converted {input_file} -> {output_file} ({len(df):,} rows)")
