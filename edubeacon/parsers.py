"""Roster spreadsheet parsing, normalization and CSV export."""

import csv
import logging
import re
from datetime import datetime
from io import BytesIO, StringIO
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from edubeacon.records import FeePayment, StudentRecord, apply_fee_payment, set_attendance_baseline
from edubeacon.models import utcnow

logger = logging.getLogger(__name__)

FEE_STATUSES = ('paid', 'partial', 'pending', 'overdue')

# Standard column name -> accepted spellings after normalize_col_name
COLUMN_ALIASES: Dict[str, List[str]] = {
    'student_id': ['student#', 'student', 'student id', 'studentid', 'student number', 'id'],
    'name': ['student name', 'studentname', 'name', 'full name'],
    'email': ['email', 'e-mail', 'email address', 'student email'],
    'roll_number': ['roll number', 'rollnumber', 'roll no', 'roll'],
    'attendance_pct': [
        'attendance', 'attendance %', 'attendance percent', 'attendance percentage',
        'attended % to date', 'attended to date', 'attendance pct'
    ],
    'gpa': ['gpa', 'grade point average', 'cgpa'],
    'fee_status': ['fee status', 'payment status', 'fees status', 'fee payment status'],
    'total_fee_amount': ['total fee', 'total fees', 'total fee amount', 'fee amount'],
    'paid_amount': ['paid', 'paid amount', 'amount paid', 'fees paid'],
    'due_date': ['due date', 'fee due date', 'payment due date'],
}

ROSTER_COLUMNS = list(COLUMN_ALIASES.keys())


def normalize_col_name(col_name) -> str:
    """Normalize a column name for matching."""
    if pd.isna(col_name):
        return ""
    normalized = str(col_name).strip().lower()
    normalized = re.sub(r'[.,#%_]', ' ', normalized)
    normalized = re.sub(r'\s+', ' ', normalized)
    return normalized.strip()


def normalize_columns(df: pd.DataFrame) -> pd.DataFrame:
    """
    Rename roster columns onto the standard names.

    Unrecognised columns are dropped; missing standard columns are added
    empty so downstream code can rely on them.

    Args:
        df: Raw roster DataFrame

    Returns:
        DataFrame with exactly the ROSTER_COLUMNS
    """
    df = df.copy()
    rename = {}
    for col in df.columns:
        normalized = normalize_col_name(col)
        for target, variations in COLUMN_ALIASES.items():
            if normalized in [normalize_col_name(v) for v in variations] and target not in rename.values():
                rename[col] = target
                break

    if not rename:
        logger.warning("No roster columns recognised. Original columns: %s", list(df.columns))
    df = df.rename(columns=rename)
    df = df.loc[:, ~df.columns.duplicated(keep='first')]

    for col in ROSTER_COLUMNS:
        if col not in df.columns:
            df[col] = np.nan
    return df[ROSTER_COLUMNS]


def normalize_pct(x) -> float:
    """
    Normalize percentage values.
    Handles both 0-1 decimals (e.g., 0.88) and 0-100 percentages (e.g., 88).

    Args:
        x: Value that might be in 0-1 range or 0-100 range, or a string like "85%"

    Returns:
        Percentage in 0-100 range
    """
    if x is None or pd.isna(x):
        return 0.0

    try:
        if isinstance(x, str):
            val_str = x.strip().replace('%', '').strip()
            if not val_str:
                return 0.0
            val = float(val_str)
        else:
            val = float(x)

        if np.isnan(val) or np.isinf(val):
            return 0.0

        # <= 1 is read as a fraction
        if val <= 1.0:
            return val * 100.0
        return min(val, 100.0)
    except (ValueError, TypeError):
        logger.debug("normalize_pct could not parse %r", x)
        return 0.0


def clean_numeric_value(value) -> float:
    """
    Clean numeric values to ensure JSON compliance.
    Replaces NaN, Infinity, and unparseable values with 0.0.
    """
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return 0.0
    try:
        val = float(str(value).replace(',', '').strip()) if isinstance(value, str) else float(value)
    except (ValueError, TypeError):
        return 0.0
    if np.isnan(val) or np.isinf(val):
        return 0.0
    return val


def clean_text(value) -> Optional[str]:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    text = str(value).strip()
    if text.endswith('.0') and text[:-2].isdigit():
        text = text[:-2]
    return text or None


def load_roster(file_bytes: bytes, filename: str) -> pd.DataFrame:
    """
    Load a student roster from an Excel (.xlsx) or CSV upload.

    Total/Summary rows and rows without a name are dropped, percentages are
    normalized to 0-100 and numbers are cleaned.

    Args:
        file_bytes: Raw bytes of the uploaded file
        filename: Original file name, used to pick the reader

    Returns:
        Normalized roster DataFrame
    """
    lower = filename.lower()
    if lower.endswith('.xlsx'):
        raw_df = pd.read_excel(BytesIO(file_bytes), engine='openpyxl')
    elif lower.endswith('.csv'):
        raw_df = pd.read_csv(BytesIO(file_bytes), dtype=str, keep_default_na=True)
    else:
        raise ValueError("Invalid file type. Please upload a roster as .xlsx or .csv")

    df = normalize_columns(raw_df)

    names = df['name'].astype(str).str.strip()
    mask = (
        df['name'].notna()
        & names.ne('')
        & ~names.str.contains('Total|Summary', case=False, na=False)
    )
    df = df[mask].copy()

    df['name'] = df['name'].astype(str).str.strip()
    df['attendance_pct'] = df['attendance_pct'].apply(normalize_pct)
    df['gpa'] = df['gpa'].apply(clean_numeric_value).clip(lower=0.0, upper=4.0)
    df['total_fee_amount'] = df['total_fee_amount'].apply(clean_numeric_value)
    df['paid_amount'] = df['paid_amount'].apply(clean_numeric_value)
    df['due_date'] = pd.to_datetime(df['due_date'], errors='coerce', utc=True)
    df['fee_status'] = df['fee_status'].apply(
        lambda v: clean_text(v).lower() if clean_text(v) else None
    )
    for col in ('student_id', 'email', 'roll_number'):
        df[col] = df[col].apply(clean_text)

    logger.info("Loaded roster %s: %d students", filename, len(df))
    return df.reset_index(drop=True)


def roster_to_records(
    df: pd.DataFrame,
    organization_id: str,
    mentor_id: Optional[str] = None,
    as_of: Optional[datetime] = None
) -> List[StudentRecord]:
    """
    Turn a normalized roster into student records.

    Fee status is derived from the amounts and due date unless the roster
    states one; a stated status must be one of paid/partial/pending/overdue.
    """
    as_of = as_of or utcnow()
    records = []
    for idx, row in df.iterrows():
        row_no = idx + 2  # header is row 1
        email = clean_text(row['email'])
        if not email:
            raise ValueError(f"Row {row_no}: email is required for {row['name']}")

        status = clean_text(row['fee_status'])
        if status is not None and status not in FEE_STATUSES:
            raise ValueError(
                f"Row {row_no}: invalid fee status '{status}'. Expected one of: {', '.join(FEE_STATUSES)}"
            )

        fields = {}
        student_id = clean_text(row['student_id'])
        if student_id:
            fields['id'] = student_id
        record = StudentRecord(
            organization_id=organization_id,
            mentor_id=mentor_id,
            name=row['name'],
            email=email,
            roll_number=clean_text(row['roll_number']),
            **fields
        )
        set_attendance_baseline(record, float(row['attendance_pct']))
        record.academic.gpa = float(row['gpa'])

        due_date = row['due_date']
        record.fees.paid_amount = float(row['paid_amount'])
        apply_fee_payment(record, FeePayment(
            total_fee_amount=float(row['total_fee_amount']) or None,
            due_date=None if pd.isna(due_date) else due_date.to_pydatetime()
        ), as_of=as_of)
        if status is not None:
            record.fees.payment_status = status

        records.append(record)
    return records


def records_to_csv(records: List[StudentRecord]) -> str:
    """Export the current analysis of each student as CSV text."""
    output = StringIO()
    writer = csv.writer(output)

    writer.writerow([
        'Student ID',
        'Student Name',
        'Roll Number',
        'Email',
        'Attendance %',
        'GPA',
        'Fee Status',
        'Attendance Risk',
        'Academic Risk',
        'Financial Risk',
        'Overall Risk',
        'Risk Factors'
    ])

    for record in records:
        analysis = record.risk_analysis.analysis
        writer.writerow([
            record.id,
            record.name,
            record.roll_number or '',
            record.email,
            f"{record.attendance.percentage:.2f}",
            f"{record.academic.gpa:.2f}",
            record.fees.payment_status,
            analysis.attendance_risk if analysis else '',
            analysis.academic_risk if analysis else '',
            analysis.financial_risk if analysis else '',
            analysis.overall_risk_level if analysis else '',
            '; '.join(analysis.risk_factors) if analysis else ''
        ])

    return output.getvalue()
