import pandas as pd
import openpyxl
from openpyxl.styles import Font, Alignment, Border, Side, PatternFill
from openpyxl.utils import get_column_letter
import os
import logging
from datetime import datetime
from typing import Optional, Dict, List

from models import GENDER_MALE, GENDER_FEMALE


THIN_BORDER = Border(
    left=Side(style='thin'),
    right=Side(style='thin'),
    top=Side(style='thin'),
    bottom=Side(style='thin')
)
ZEBRA_FILL = PatternFill(start_color="F8FAFC", end_color="F8FAFC", fill_type="solid")


class ExcelHandler:
    def __init__(self, export_folder: str = 'exports', institution_name: str = 'SMP MUSLIMIN CILILIN'):
        self.logger = logging.getLogger(__name__)
        self.export_folder = export_folder
        self.institution_name = institution_name

    def read_candidate_data(self, filepath: str) -> Optional[pd.DataFrame]:
        """
        Read admission candidates from an Excel file.
        Required columns: Name, Gender. Everything else is optional.
        """
        try:
            df = pd.read_excel(filepath)

            # Normalize column names (handle case variations and spaces)
            df.columns = df.columns.astype(str).str.strip().str.lower().str.replace(' ', '_')

            column_mappings = {
                'full_name': ['full_name', 'name', 'nama', 'nama_lengkap', 'student_name'],
                'gender': ['gender', 'sex', 'jenis_kelamin', 'jk', 'l/p'],
                'nisn': ['nisn'],
                'origin_school': ['origin_school', 'school', 'asal_sekolah', 'asal_sd', 'previous_school'],
                'birth_place': ['birth_place', 'tempat_lahir'],
                'birth_date': ['birth_date', 'date_of_birth', 'tanggal_lahir'],
                'father_name': ['father_name', 'nama_ayah'],
                'mother_name': ['mother_name', 'nama_ibu'],
                'parent_phone': ['parent_phone', 'phone', 'no_hp'],
                'address': ['address', 'alamat'],
            }

            mapped_columns = {}
            for expected_col, possible_names in column_mappings.items():
                for possible_name in possible_names:
                    if possible_name in df.columns:
                        mapped_columns[expected_col] = possible_name
                        break

            missing_columns = [c for c in ('full_name', 'gender') if c not in mapped_columns]
            if missing_columns:
                self.logger.error(f"Missing columns: {missing_columns}")
                return None

            result_df = pd.DataFrame()
            for standard_name, original_name in mapped_columns.items():
                result_df[standard_name] = df[original_name]
            for optional_col in column_mappings:
                if optional_col not in result_df.columns:
                    result_df[optional_col] = None

            return self._clean_candidate_data(result_df)

        except Exception as e:
            self.logger.error(f"Error reading Excel file: {str(e)}")
            return None

    def _clean_candidate_data(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Clean and validate candidate data.
        """
        df = df.dropna(subset=['full_name', 'gender']).copy()

        df['full_name'] = df['full_name'].astype(str).str.strip()
        df = df[df['full_name'] != ''].copy()

        gender_mapping = {
            'l': GENDER_MALE, 'm': GENDER_MALE, 'male': GENDER_MALE,
            'laki-laki': GENDER_MALE, 'laki laki': GENDER_MALE,
            'p': GENDER_FEMALE, 'f': GENDER_FEMALE, 'female': GENDER_FEMALE,
            'perempuan': GENDER_FEMALE,
        }
        df['gender'] = df['gender'].astype(str).str.strip().str.lower().map(gender_mapping)
        unknown = df['gender'].isna().sum()
        if unknown:
            self.logger.warning(f"Dropping {unknown} rows with an unrecognised gender")
        df = df.dropna(subset=['gender'])

        for col in ('nisn', 'origin_school', 'birth_place', 'father_name',
                    'mother_name', 'parent_phone', 'address'):
            df[col] = df[col].apply(self._as_text).astype(object)

        df['birth_date'] = df['birth_date'].apply(self._format_date).astype(object)

        # Rows without a NISN are kept even when several of them exist
        with_nisn = df[df['nisn'].notna()].drop_duplicates(subset=['nisn'], keep='first')
        df = pd.concat([with_nisn, df[df['nisn'].isna()]]).sort_index()

        return df.reset_index(drop=True)

    @staticmethod
    def _as_text(value) -> Optional[str]:
        if value is None or pd.isna(value):
            return None
        # Numeric NISNs come back as floats when the column has blanks
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        text = str(value).strip()
        return text or None

    @staticmethod
    def _format_date(value) -> Optional[str]:
        if value is None or pd.isna(value):
            return None
        try:
            return pd.to_datetime(value, dayfirst=True).strftime('%Y-%m-%d')
        except (ValueError, TypeError):
            return str(value)

    def export_class_division(self, distribution: Dict[str, List[Dict]],
                              academic_year: str) -> Optional[str]:
        """
        Export a class division, one worksheet per class.
        Columns: No. | NIS | Full Name | Class | Gender
        """
        if not distribution:
            self.logger.error("No class division to export")
            return None

        try:
            wb = openpyxl.Workbook()
            wb.remove(wb.active)
            export_date = datetime.now().strftime('%d %B %Y')

            for class_name in sorted(distribution):
                students = distribution[class_name]
                ws = wb.create_sheet(title=f"Kelas {class_name}")

                males = sum(1 for s in students if s.get('gender') == GENDER_MALE)
                females = sum(1 for s in students if s.get('gender') == GENDER_FEMALE)

                ws['A1'] = self.institution_name
                ws['A1'].font = Font(bold=True, size=16)
                ws['A1'].alignment = Alignment(horizontal='center', vertical='center')
                ws.merge_cells('A1:E1')

                ws['A2'] = f"CLASS LIST {class_name} - ACADEMIC YEAR {academic_year}"
                ws['A2'].font = Font(bold=True, size=14)
                ws['A2'].alignment = Alignment(horizontal='center', vertical='center')
                ws.merge_cells('A2:E2')

                ws['A4'] = f"Export Date: {export_date}"
                ws['A4'].font = Font(italic=True, size=11)
                ws['A5'] = f"Total Students: {len(students)}"
                ws['A5'].font = Font(bold=True, size=11)
                ws['A6'] = f"Male: {males}"
                ws['A7'] = f"Female: {females}"

                headers = ['No.', 'NIS', 'Full Name', 'Class', 'Gender']
                for col, header in enumerate(headers, 1):
                    cell = ws.cell(row=10, column=col, value=header)
                    cell.font = Font(bold=True, color="FFFFFF")
                    cell.fill = PatternFill(start_color="7C3AED", end_color="7C3AED", fill_type="solid")
                    cell.alignment = Alignment(horizontal='center', vertical='center')
                    cell.border = THIN_BORDER

                sorted_students = sorted(
                    students, key=lambda s: (s.get('nis') or '', s.get('full_name') or '')
                )

                for index, student in enumerate(sorted_students):
                    row_num = 11 + index
                    row_data = [
                        index + 1,
                        student.get('nis') or '-',
                        student.get('full_name') or '-',
                        class_name,
                        student.get('gender') or '-',
                    ]
                    for col, value in enumerate(row_data, 1):
                        cell = ws.cell(row=row_num, column=col, value=value)
                        cell.border = THIN_BORDER
                        if col == 3:
                            cell.alignment = Alignment(vertical='center')
                        else:
                            cell.alignment = Alignment(horizontal='center', vertical='center')
                        if index % 2 == 0:
                            cell.fill = ZEBRA_FILL
                    # NIS stays text so leading zeros survive
                    ws.cell(row=row_num, column=2).number_format = '@'

                sign_row = 11 + len(sorted_students) + 3
                ws.cell(row=sign_row, column=4, value="Homeroom Teacher").font = Font(bold=True, size=11)
                ws.cell(row=sign_row, column=4).alignment = Alignment(horizontal='center')
                ws.merge_cells(start_row=sign_row, start_column=4, end_row=sign_row, end_column=5)

                name_row = 11 + len(sorted_students) + 8
                ws.cell(row=name_row, column=4, value="(............................)")
                ws.cell(row=name_row, column=4).alignment = Alignment(horizontal='center')
                ws.merge_cells(start_row=name_row, start_column=4, end_row=name_row, end_column=5)

                for col_idx, width in enumerate([5, 18, 35, 12, 15], 1):
                    ws.column_dimensions[get_column_letter(col_idx)].width = width

            filename = (
                f"class_division_{academic_year.replace('/', '-')}_"
                f"{datetime.now().strftime('%Y%m%d_%H%M%S')}.xlsx"
            )
            filepath = os.path.join(self.export_folder, filename)
            wb.save(filepath)

            self.logger.info(f"Exported class division ({len(distribution)} classes) to {filepath}")
            return filepath

        except Exception as e:
            self.logger.error(f"Error exporting class division: {str(e)}")
            return None

    def export_all_candidates(self, candidates: List[Dict], academic_year: str) -> Optional[str]:
        """
        Export every registered candidate to a single sheet.
        """
        if not candidates:
            self.logger.error("No candidates to export")
            return None

        try:
            wb = openpyxl.Workbook()
            ws = wb.active
            ws.title = "Candidates"

            males = sum(1 for c in candidates if c.get('gender') == GENDER_MALE)
            females = sum(1 for c in candidates if c.get('gender') == GENDER_FEMALE)

            ws['A1'] = self.institution_name
            ws['A1'].font = Font(bold=True, size=16)
            ws['A1'].alignment = Alignment(horizontal='center')
            ws.merge_cells('A1:L1')

            ws['A2'] = f"NEW STUDENT CANDIDATES - ACADEMIC YEAR {academic_year}"
            ws['A2'].font = Font(bold=True, size=14)
            ws['A2'].alignment = Alignment(horizontal='center')
            ws.merge_cells('A2:L2')

            ws['A4'] = f"Export Date: {datetime.now().strftime('%d %B %Y')}"
            ws['A4'].font = Font(italic=True, size=11)
            ws['A5'] = f"Total Candidates: {len(candidates)}"
            ws['A5'].font = Font(bold=True)
            ws['A6'] = f"Male: {males}"
            ws['A7'] = f"Female: {females}"

            headers = ['No.', 'Registration No.', 'Full Name', 'Gender', 'Birth Place',
                       'Birth Date', 'Origin School', 'NISN', 'Father', 'Mother',
                       'Parent Phone', 'Address']
            keys = ['registration_number', 'full_name', 'gender', 'birth_place',
                    'birth_date', 'origin_school', 'nisn', 'father_name', 'mother_name',
                    'parent_phone', 'address']

            for col, header in enumerate(headers, 1):
                cell = ws.cell(row=10, column=col, value=header)
                cell.font = Font(bold=True, color="FFFFFF")
                cell.fill = PatternFill(start_color="1E3A8A", end_color="1E3A8A", fill_type="solid")
                cell.alignment = Alignment(horizontal='center', vertical='center')
                cell.border = THIN_BORDER

            for index, candidate in enumerate(candidates):
                row_data = [index + 1] + [candidate.get(key) or '-' for key in keys]
                for col, value in enumerate(row_data, 1):
                    cell = ws.cell(row=11 + index, column=col, value=value)
                    cell.border = THIN_BORDER
                    if index % 2 == 0:
                        cell.fill = ZEBRA_FILL

            # Auto-adjust column widths
            last_row = 11 + len(candidates)
            for col_idx in range(1, len(headers) + 1):
                max_length = 0
                for row_idx in range(10, last_row):
                    value = ws.cell(row=row_idx, column=col_idx).value
                    if value:
                        max_length = max(max_length, len(str(value)))
                ws.column_dimensions[get_column_letter(col_idx)].width = min(max_length + 2, 50)

            filename = (
                f"candidates_{academic_year.replace('/', '-')}_"
                f"{datetime.now().strftime('%Y%m%d_%H%M%S')}.xlsx"
            )
            filepath = os.path.join(self.export_folder, filename)
            wb.save(filepath)

            self.logger.info(f"Exported {len(candidates)} candidates to {filepath}")
            return filepath

        except Exception as e:
            self.logger.error(f"Error exporting candidates: {str(e)}")
            return None
