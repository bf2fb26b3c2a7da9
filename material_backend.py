import os
import re
import json
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed

import pandas as pd
from matplotlib.figure import Figure
from openai import OpenAI
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception

import config

logger = logging.getLogger(__name__)

DEFAULT_DEMO_CODES = ['401121145', '401121146', '401121147']
DEMO_BULK_SIZE = 3

STOCKING_STATUSES = ['Stock Normally', 'Do not Stock', 'Stock Minimal']
CRITICALITIES = ['A', 'B', 'C', 'D']
RISK_LEVELS = ['Low', 'Medium', 'High']
ROP_STATUSES = ['Reorder', 'Overstock', 'Optimal']


def _obj(**properties):
    return {"type": "object", "properties": properties}


def _array(items):
    return {"type": "array", "items": items}


STRING = {"type": "string"}
NUMBER = {"type": "number"}

MATERIAL_SCHEMA = _obj(
    materialName=STRING,
    materialCode=STRING,
    description=STRING,
    totalQuantity=NUMBER,
    averageUnitCost=NUMBER,
    materialType=STRING,
    stockingStatus={"type": "string", "enum": STOCKING_STATUSES},
    criticality={"type": "string", "enum": CRITICALITIES},
    estimatedAnnualUsage=NUMBER,
    locations=_array(_obj(name=STRING, stock=NUMBER, lastUsed=STRING)),
    equipmentParent=_array(STRING),
    lastUsedDate=STRING,
    duplicateAnalysis=_obj(
        totalDuplicates=NUMBER,
        totalStockAcrossDuplicates=NUMBER,
        potentialSavings=NUMBER,
        duplicates=_array(_obj(
            materialCode=STRING,
            manufacturer=STRING,
            description=STRING,
            stockInHand=NUMBER,
            annualUsage=NUMBER,
            lastUsed=STRING,
            location=STRING,
            unitCost=NUMBER,
        )),
    ),
    obsolescence=_obj(
        riskLevel={"type": "string", "enum": RISK_LEVELS},
        yearsInStock=NUMBER,
        marketAvailability=STRING,
    ),
    ropMax=_obj(
        reorderPoint=NUMBER,
        maxStock=NUMBER,
        currentStatus={"type": "string", "enum": ROP_STATUSES},
    ),
    ropCalculation=_obj(
        suggestedROP=NUMBER,
        suggestedMAX=NUMBER,
        suggestedEOQ=NUMBER,
        requestedROP=NUMBER,
        requestedMAX=NUMBER,
        inputParameters=_obj(annualUsage=NUMBER, leadTime=NUMBER, criticality=STRING, unitPrice=NUMBER),
        baseCalculations=_obj(baseROP=NUMBER, baseEOQ=NUMBER, baseMAX=NUMBER),
        adjustments=_obj(
            reason=STRING,
            duplicateDeduction=NUMBER,
            obsolescenceDeduction=NUMBER,
            totalDeduction=NUMBER,
        ),
    ),
)

PROMPT_TEMPLATE = """
Generate a realistic material profile for a mining company inventory item with code "{code}".
Assume this item might be a mechanical part (bearing, belt, filter, hydraulic pump) used in heavy mining equipment.

CRITICAL INSTRUCTIONS:
1. 'equipmentParent' MUST be a list of NUMERIC EQUIPMENT CODES (e.g., "600000236064", "500000129982").
2. 'stockingStatus' MUST be one of: 'Stock Normally', 'Do not Stock', 'Stock Minimal'.
3. 'criticality' MUST be 'A', 'B', 'C', or 'D'.
4. Populate 'estimatedAnnualUsage'.
5. CREATE DATA about POTENTIAL DUPLICATES in 'duplicateAnalysis'.
6. GENERATE DETAILED ROP CALCULATIONS in 'ropCalculation'.

Ensure the response is valid JSON matching the schema.
"""

SUMMARY_COLUMNS = [
    'Material Code', 'Material Name', 'Material Type', 'Criticality', 'Stocking Status',
    'Total Quantity', 'Average Unit Cost', 'Inventory Value', 'Annual Usage',
    'Duplicates', 'Potential Savings', 'Obsolescence Risk',
    'Reorder Point', 'Max Stock', 'Current Status', 'Suggested EOQ'
]


def is_rate_limit_error(exception: BaseException) -> bool:
    """Check if the exception is a rate limit error."""
    return "429" in str(exception) or "RATELIMIT_EXCEEDED" in str(exception)


def get_mock_data(code):
    """Fixed demo profile, rebuilt on every call so callers can mutate it freely."""
    return {
        "materialName": "Spherical Roller Bearing 22216",
        "materialCode": code,
        "description": "Heavy duty spherical roller bearing for conveyor pulley",
        "totalQuantity": 45,
        "averageUnitCost": 250,
        "materialType": "Spare Part",
        "stockingStatus": "Stock Normally",
        "criticality": "B",
        "estimatedAnnualUsage": 120,
        "locations": [
            {"name": "Site A - Warehouse 1", "stock": 20, "lastUsed": "2023-10-15"},
            {"name": "Site B - Central", "stock": 25, "lastUsed": "2022-05-20"},
        ],
        "equipmentParent": ["600000236064", "600000998877", "500200112233"],
        "lastUsedDate": "2023-10-15",
        "duplicateAnalysis": {
            "totalDuplicates": 2,
            "totalStockAcrossDuplicates": 120,
            "potentialSavings": 30000,
            "duplicates": [
                {
                    "materialCode": "998877665",
                    "manufacturer": "SKF",
                    "description": "Bearing 22216 EK",
                    "stockInHand": 80,
                    "annualUsage": 5,
                    "lastUsed": "2021-01-10",
                    "location": "Site A - Warehouse 1",
                    "unitCost": 280,
                },
                {
                    "materialCode": "112233445",
                    "manufacturer": "Timken",
                    "description": "Roller Bearing 22216-E1",
                    "stockInHand": 40,
                    "annualUsage": 12,
                    "lastUsed": "2023-11-01",
                    "location": "Site C",
                    "unitCost": 240,
                },
            ],
        },
        "obsolescence": {
            "riskLevel": "High",
            "yearsInStock": 2.5,
            "marketAvailability": "Readily Available",
        },
        "ropMax": {
            "reorderPoint": 10,
            "maxStock": 50,
            "currentStatus": "Overstock",
        },
        "ropCalculation": {
            "suggestedROP": 10,
            "suggestedMAX": 50,
            "suggestedEOQ": 15,
            "requestedROP": 12,
            "requestedMAX": 60,
            "inputParameters": {
                "annualUsage": 120,
                "leadTime": 30,
                "criticality": "B",
                "unitPrice": 250,
            },
            "baseCalculations": {
                "baseROP": 12,
                "baseEOQ": 15,
                "baseMAX": 60,
            },
            "adjustments": {
                "reason": "High duplication detected across sites",
                "duplicateDeduction": 2,
                "obsolescenceDeduction": 0,
                "totalDeduction": 2,
            },
        },
    }


def demo_bulk_profiles(codes):
    """Three mock profiles with different type/criticality so bulk filtering has something to show."""
    demo_codes = codes[:DEMO_BULK_SIZE] if len(codes) > 0 else DEFAULT_DEMO_CODES

    profiles = []
    for index, code in enumerate(demo_codes):
        base = get_mock_data(code)
        if index == 1:
            base["materialType"] = "Consumable"
            base["criticality"] = "C"
            base["stockingStatus"] = "Do not Stock"
            base["totalQuantity"] = 1200
            base["duplicateAnalysis"]["totalDuplicates"] = 0
            base["duplicateAnalysis"]["duplicates"] = []
        elif index == 2:
            base["materialType"] = "Hydraulic"
            base["criticality"] = "A"
            base["stockingStatus"] = "Stock Minimal"
            base["totalQuantity"] = 5
        profiles.append(base)
    return profiles


class MaterialBackend:
    """
    Looks up material profiles through an OpenAI-compatible model constrained
    by MATERIAL_SCHEMA, falling back to mock profiles when no key is set or
    the call fails. Also builds the summary table, Excel report and charts.
    """
    def __init__(self, api_key=None, base_url=None, model=None, client=None,
                 bulk_limit=None, bulk_workers=None):
        self.model = model or config.MATERIAL_MODEL
        self.bulk_limit = bulk_limit or config.BULK_LIMIT
        self.bulk_workers = bulk_workers or config.BULK_WORKERS

        # Only initialize client if API key is present
        if client is not None:
            self.client = client
        elif api_key:
            self.client = OpenAI(api_key=api_key, base_url=base_url)
        else:
            self.client = None

    @property
    def demo_mode(self):
        return self.client is None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception(is_rate_limit_error),
        reraise=True
    )
    def request_profile(self, code):
        """Ask the model for a profile of one material code and parse its JSON answer."""
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": PROMPT_TEMPLATE.format(code=code)}],
            response_format={
                "type": "json_schema",
                "json_schema": {"name": "material_profile", "schema": MATERIAL_SCHEMA},
            },
            max_completion_tokens=config.MAX_COMPLETION_TOKENS
        )
        text = response.choices[0].message.content if response.choices else None
        if not text:
            raise ValueError("No data returned")

        profile = json.loads(text)
        if not isinstance(profile, dict):
            raise ValueError(f"Expected a JSON object, got {type(profile).__name__}")
        profile["materialCode"] = code
        return profile

    def analyze_material_code(self, code):
        """Profile for a single code; any failure degrades to the mock profile."""
        if self.demo_mode:
            logger.info(f"Demo mode: returning mock profile for {code}")
            return get_mock_data(code)

        try:
            return self.request_profile(code)
        except Exception as e:
            logger.error(f"Material API error for {code}: {e}")
            # Fallback mock data in case of API failure
            return get_mock_data(code)

    def generate_bulk_analysis(self, codes):
        """Profiles for a list of codes, in input order."""
        if self.demo_mode:
            return demo_bulk_profiles(codes)

        unique_codes = list(dict.fromkeys(codes)) or list(DEFAULT_DEMO_CODES)
        if len(unique_codes) > self.bulk_limit:
            logger.warning(f"Bulk request of {len(unique_codes)} codes truncated to {self.bulk_limit}")
            unique_codes = unique_codes[:self.bulk_limit]

        results = {}
        with ThreadPoolExecutor(max_workers=self.bulk_workers) as executor:
            futures = {executor.submit(self.analyze_material_code, code): code for code in unique_codes}
            for future in as_completed(futures):
                results[futures[future]] = future.result()

        return [results[code] for code in unique_codes]

    def export_results(self, profiles, output_path):
        """
        Save the summary and duplicate tables to Excel with a formatted header row.
        `output_path` may be a file path or a binary buffer such as BytesIO.
        """
        summary_df = profiles_to_frame(profiles)
        duplicates_df = duplicates_to_frame(profiles)

        with pd.ExcelWriter(output_path, engine='xlsxwriter') as writer:
            workbook = writer.book
            header_format = workbook.add_format({
                'bold': True,
                'bg_color': '#D7E4BC',
                'border': 1
            })

            for sheet_name, export_df in (('Material Analysis', summary_df), ('Duplicates', duplicates_df)):
                export_df.to_excel(writer, index=False, sheet_name=sheet_name)
                worksheet = writer.sheets[sheet_name]

                for col_num, value in enumerate(export_df.columns.values):
                    worksheet.write(0, col_num, value, header_format)

                for i, col in enumerate(export_df.columns):
                    column_len = len(col) + 2
                    if not export_df.empty:
                        column_len = max(export_df[col].astype(str).str.len().max(), len(col)) + 2
                    worksheet.set_column(i, i, min(column_len, 50))

        logger.info(f"Exported {len(summary_df)} materials")
        return output_path

    def create_plot(self, profile, output_dir, name=None):
        """
        Bar chart of stock held at each location. Saved as `<name>.png`
        (the material code when no name is given); returns the file name.
        """
        if not os.path.exists(output_dir):
            os.makedirs(output_dir)

        code = str(profile.get('materialCode', 'unknown'))
        locations = profile.get('locations') or []
        names = [loc.get('name', '?') for loc in locations]
        stock = [loc.get('stock', 0) or 0 for loc in locations]

        # Standalone Figure, not registered with pyplot, so requests never share one
        fig = Figure(figsize=(8, 4))
        ax = fig.subplots()
        ax.bar(names, stock, color='#2563EB')
        reorder_point = (profile.get('ropMax') or {}).get('reorderPoint')
        if reorder_point is not None:
            ax.axhline(y=reorder_point, color='r', linestyle='--', label='Reorder Point')
            ax.legend()

        ax.set_title(f'Stock by Location: {code}')
        ax.set_ylabel('Units')
        ax.grid(True, axis='y', alpha=0.3)
        fig.tight_layout()

        filename = f"{safe_filename(name or code)}.png"
        fig.savefig(os.path.join(output_dir, filename))
        return filename


def safe_filename(value):
    return re.sub(r'[^A-Za-z0-9_-]', '_', value) or 'unknown'


def profiles_to_frame(profiles):
    """One summary row per profile. Missing nested sections read as empty."""
    rows = []
    for p in profiles:
        duplicates = p.get('duplicateAnalysis') or {}
        obsolescence = p.get('obsolescence') or {}
        rop_max = p.get('ropMax') or {}
        rop_calc = p.get('ropCalculation') or {}
        quantity = p.get('totalQuantity') or 0
        unit_cost = p.get('averageUnitCost') or 0
        rows.append({
            'Material Code': p.get('materialCode'),
            'Material Name': p.get('materialName'),
            'Material Type': p.get('materialType'),
            'Criticality': p.get('criticality'),
            'Stocking Status': p.get('stockingStatus'),
            'Total Quantity': quantity,
            'Average Unit Cost': unit_cost,
            'Inventory Value': round(quantity * unit_cost, 2),
            'Annual Usage': p.get('estimatedAnnualUsage'),
            'Duplicates': duplicates.get('totalDuplicates', 0),
            'Potential Savings': duplicates.get('potentialSavings', 0),
            'Obsolescence Risk': obsolescence.get('riskLevel'),
            'Reorder Point': rop_max.get('reorderPoint'),
            'Max Stock': rop_max.get('maxStock'),
            'Current Status': rop_max.get('currentStatus'),
            'Suggested EOQ': rop_calc.get('suggestedEOQ'),
        })
    return pd.DataFrame(rows, columns=SUMMARY_COLUMNS)


def duplicates_to_frame(profiles):
    rows = []
    for p in profiles:
        for dup in (p.get('duplicateAnalysis') or {}).get('duplicates') or []:
            rows.append({
                'Material Code': p.get('materialCode'),
                'Duplicate Code': dup.get('materialCode'),
                'Manufacturer': dup.get('manufacturer'),
                'Description': dup.get('description'),
                'Stock In Hand': dup.get('stockInHand'),
                'Annual Usage': dup.get('annualUsage'),
                'Last Used': dup.get('lastUsed'),
                'Location': dup.get('location'),
                'Unit Cost': dup.get('unitCost'),
            })
    return pd.DataFrame(rows, columns=[
        'Material Code', 'Duplicate Code', 'Manufacturer', 'Description',
        'Stock In Hand', 'Annual Usage', 'Last Used', 'Location', 'Unit Cost'
    ])


def filter_profiles(frame, material_type=None, criticality=None, stocking_status=None):
    """Exact-match filters on the summary table; a blank filter matches everything."""
    mask = pd.Series(True, index=frame.index)
    for column, value in (('Material Type', material_type),
                          ('Criticality', criticality),
                          ('Stocking Status', stocking_status)):
        if value:
            mask &= frame[column] == value
    return frame[mask]
