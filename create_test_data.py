#!/usr/bin/env python3
"""
Create realistic admission candidates for trying out the class division workflow.
"""
import random
from typing import List, Dict, Optional

import pandas as pd
from faker import Faker

from models import GENDER_MALE, GENDER_FEMALE, STATUS_ACCEPTED

ORIGIN_SCHOOLS = [
    'SDN 1 Cililin', 'SDN 2 Cililin', 'SDN Karangtanjung', 'SDN Budiharja',
    'SDN Rancapanggung', 'MI Al-Hidayah', 'SDIT Nurul Fikri', 'SDN Mukapayung',
]


def create_candidate_test_data(count: int = 120, seed: Optional[int] = None) -> List[Dict]:
    """Generate accepted candidates with Indonesian names and a spread of origin schools."""
    fake = Faker('id_ID')
    rng = random.Random(seed)
    if seed is not None:
        fake.seed_instance(seed)

    candidates = []
    for i in range(count):
        gender = rng.choice([GENDER_MALE, GENDER_FEMALE])
        if gender == GENDER_MALE:
            first_name = fake.first_name_male()
        else:
            first_name = fake.first_name_female()

        candidates.append({
            'full_name': f"{first_name} {fake.last_name()}",
            'nisn': f"{rng.randint(10, 19)}{str(rng.randint(0, 99999999)).zfill(8)}",
            'gender': gender,
            'birth_place': fake.city(),
            'birth_date': fake.date_of_birth(minimum_age=11, maximum_age=13).isoformat(),
            'origin_school': rng.choice(ORIGIN_SCHOOLS),
            'father_name': fake.name_male(),
            'mother_name': fake.name_female(),
            'parent_phone': fake.phone_number(),
            'address': fake.address().replace('\n', ', '),
            'status': STATUS_ACCEPTED,
        })

    return candidates


def write_candidate_test_data(output_file: str = 'spmb_candidates_test_data.xlsx',
                              count: int = 120) -> str:
    df = pd.DataFrame(create_candidate_test_data(count))
    df.to_excel(output_file, index=False, engine='openpyxl')

    print(f"✅ Candidate test data created: '{output_file}'")
    print(f"📊 Total candidates: {len(df)}")
    print(f"👥 Gender distribution: {df['gender'].value_counts().to_dict()}")
    print(f"🏫 Origin schools: {df['origin_school'].nunique()}")
    return output_file


if __name__ == "__main__":
    write_candidate_test_data()
