"""
Sample extraction payloads for testing.

Shaped like the extraction model's JSON reply (camelCase keys).
"""

# Single-page report: 10 readings, 8 of which exist in the test catalog
SINGLE_PAGE_REPORT = {
    "clientName": "John Doe",
    "clientGender": "male",
    "clientBirthday": "1980-04-02",
    "labName": "Central Lab",
    "orderingDoctor": "Dr. Smith",
    "testDate": "2024-01-15",
    "biomarkers": [
        {"name": "Glucose", "value": 92, "unit": "mg/dL", "referenceMin": 70, "referenceMax": 100, "flag": "normal"},
        {"name": "LDL", "value": 3.1, "unit": "mmol/L"},
        {"name": "HDL", "value": 52, "unit": "mg/dL"},
        {"name": "Hemoglobin", "value": 145, "unit": "g/L"},
        {"name": "TSH", "value": 2.1, "unit": "uIU/mL"},
        {"name": "Creatinine", "value": 1.8, "unit": "mg/dL", "flag": "high"},
        {"name": "ALT", "value": 30, "unit": "U/L"},
        {"name": "Sodium", "value": 139, "unit": "mmol/L"},
        {"name": "Zinc Protoporphyrin", "value": 40, "unit": "umol/mol heme"},
        {"name": "Lipoprotein(a)", "value": 22, "unit": "nmol/L"},
    ]
}

UNMATCHED_NAMES = ["Zinc Protoporphyrin", "Lipoprotein(a)"]


# Five pages, 3 readings each; pages 4 and 5 repeat five earlier readings
MULTI_PAGE_REPORT = {
    1: {
        "clientName": "Jane Roe",
        "clientGender": "female",
        "labName": "Central Lab",
        "testDate": "2024-02-01",
        "biomarkers": [
            {"name": "Glucose", "value": 88, "unit": "mg/dL"},
            {"name": "LDL", "value": 110, "unit": "mg/dL"},
            {"name": "HDL", "value": 61, "unit": "mg/dL"},
        ]
    },
    2: {
        "biomarkers": [
            {"name": "Hemoglobin", "value": 13.2, "unit": "g/dL"},
            {"name": "TSH", "value": 1.9, "unit": "mIU/L"},
            {"name": "Creatinine", "value": 0.8, "unit": "mg/dL"},
        ]
    },
    3: {
        "biomarkers": [
            {"name": "Sodium", "value": 140, "unit": "mmol/L"},
            {"name": "ALT", "value": 22, "unit": "U/L"},
            {"name": "Vitamin D", "value": 35, "unit": "ng/mL"},
        ]
    },
    4: {
        "biomarkers": [
            {"name": "Fasting Glucose", "value": 88, "unit": "mg/dL"},
            {"name": "LDL-C", "value": 110, "unit": "mg/dL"},
            {"name": "Zinc", "value": 95, "unit": "ug/dL"},
        ]
    },
    5: {
        "clientName": "Jane Roe",
        "biomarkers": [
            {"name": "HDL", "value": 61, "unit": "mg/dL"},
            {"name": "Hemoglobin", "value": 132, "unit": "g/L"},
            {"name": "TSH", "value": 1.9, "unit": "mIU/L"},
        ]
    },
}
