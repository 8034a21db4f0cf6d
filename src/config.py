import os

# This will get the directory that contains your src folder
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
DATA_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "data")
OUTPUT_DIR = os.path.join(PROJECT_ROOT, "outputs")

# Default input files (CES 2019 web survey extract and 2016 census profile by FED)
DEFAULT_SURVEY_FILE = os.path.join(DATA_DIR, "ces2019_web.csv")
DEFAULT_CENSUS_FILE = os.path.join(DATA_DIR, "census_2016_fed_profile.csv")
DEFAULT_METADATA_FILE = os.path.join(DATA_DIR, "Geo_starting_row_CSV.csv")

# Tracked parties in tie-break precedence order: (label, cps19_votechoice code)
PARTIES = [
    ("Liberal", 1),
    ("Conservative", 2),
    ("Bloc", 4),
    ("NDP", 3),
    ("Green", 5),
]

# Survey column names (raw extract)
SURVEY_COLUMNS = {
    "vote_choice": "cps19_votechoice",
    "age": "cps19_age",
    "sex": "cps19_gender",
    "district": "riding_code",
}
MALE_CODE = 1

# Respondent age groups, youngest first
AGE_GROUPS = (
    ["18 to 19"]
    + [f"{lower} to {lower + 4}" for lower in range(20, 100, 5)]
    + ["100 or more"]
)
# Age groups with a poststratification cell (the census has no usable 100+ split)
CELL_AGE_GROUPS = AGE_GROUPS[:-1]
REFERENCE_AGE_GROUP = "18 to 19"
SEXES = ["Male", "Female"]

# Census profile layout: offset of each age-group row from a district's first row
CENSUS_AGE_ROW_OFFSETS = {
    "15 to 19": 13,
    "20 to 24": 14,
    "25 to 29": 15,
    "30 to 34": 16,
    "35 to 39": 17,
    "40 to 44": 18,
    "45 to 49": 19,
    "50 to 54": 20,
    "55 to 59": 21,
    "60 to 64": 22,
    "65 to 69": 24,
    "70 to 74": 25,
    "75 to 79": 26,
    "80 to 84": 27,
    "85 to 89": 29,
    "90 to 94": 30,
    "95 to 99": 31,
}
CENSUS_SEX_COLUMNS = {
    "Male": "Dim: Sex (3): Member ID: [2]: Male",
    "Female": "Dim: Sex (3): Member ID: [3]: Female",
}
CENSUS_ENCODING = "latin-1"
# "Line Number" counts the header as line 1, so the first data row is line 2
CENSUS_LINE_NUMBER_BASE = 2

# Share of the census "15 to 19" count assigned to the "18 to 19" cell
YOUNGEST_BRACKET_SHARE = 0.4
YOUNGEST_CENSUS_BRACKET = "15 to 19"

# Metadata columns and the non-riding aggregate rows (Canada, provinces, territories)
METADATA_COLUMNS = {
    "geo_code": "Geo Code",
    "geo_name": "Geo Name",
    "line_number": "Line Number",
}
EXCLUDED_GEO_CODES = {
    "1", "10", "11", "12", "13", "24", "35", "46", "47", "48", "59", "60", "61", "62",
}

# Model configuration
DEFAULT_FALLBACK_POLICY = "population"  # population | sample_mean | refuse
DEFAULT_TIE_POLICY = "precedence"  # precedence | raise
DEFAULT_OPTIMIZER = "BFGS"
DEFAULT_FE_PRIOR_SD = 2.0
DEFAULT_VCP_PRIOR_SD = 1.0

NTFY_URL = "https://ntfy.sh/mrp-canada-2019"
