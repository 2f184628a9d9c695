"""
Prompt construction for veterinary differential diagnosis.

Turns a PatientCase into one instruction string: role and source
restriction, signalment, problem and exclusion lists, safety rules, the
in-clinic drug formulary, and the output layout that
``vetddx.llm.response_parser`` knows how to read back.
"""

from __future__ import annotations

from vetddx.api.case_models import PatientCase

# ---------------------------------------------------------------------------
# Formulary
# ---------------------------------------------------------------------------

# Drug class -> entries. Each entry is the dose line followed by its
# presentation / warning bullet lines.
_FORMULARY: list[tuple[str, list[list[str]]]] = [
    ("ANTIBIOTICS (with reconstitution details)", [
        [
            "Amoxicillin + Clavulanic acid: 12.5-25 mg/kg q12h PO (Augmentin®, Curam®)",
            "Oral suspension: 156mg/5ml or 312mg/5ml",
        ],
        [
            "Cefotaxime (Xorin®, Cefotax®): 20-80 mg/kg q6-8h IV/IM (typical: 50mg/kg q8h)",
            "Vial: 500mg → reconstitute with 2ml water = 250mg/ml",
            "Vial: 1000mg → reconstitute with 4ml water = 250mg/ml",
            "CALCULATE: Total mg needed, then ml volume, then number of vials",
        ],
        [
            "Ceftriaxone (Ceftriaxone®, Wintriaxone®): 20-50 mg/kg q12-24h IV/IM (typical: 25mg/kg q24h)",
            "Vial: 500mg → reconstitute with 2ml water = 250mg/ml",
            "Vial: 1000mg → reconstitute with 3.5ml water = 285mg/ml",
            "CALCULATE: Total mg needed, then ml volume, then number of vials",
        ],
        [
            "Azithromycin: 5-10 mg/kg q24h PO (Xithrone®) - respiratory cases, check liver function first",
            "Oral suspension: 200mg/5ml",
        ],
        [
            "Clarithromycin: Dog 7.5-12.5 mg/kg q12h, Cat 7.5-15 mg/kg q12h PO (Klacid®) - respiratory",
            "Oral suspension: 125mg/5ml or 250mg/5ml",
        ],
        [
            "Cefalexin: 15-30 mg/kg q8-12h PO (Ceporex®) - skin infections",
            "Oral suspension: 125mg/5ml or 250mg/5ml",
        ],
        [
            "Ciprofloxacin: Dog 5-15 mg/kg q12h, Cat 5-10 mg/kg q24h PO - urinary tract",
            "WARNING: Use with caution - can cause cartilage damage in young animals",
            "Oral tablets: 500mg or 750mg",
        ],
        [
            "Doxycycline: 5-10 mg/kg q12-24h PO (Vibramycin®) - blood parasites, respiratory",
            "Oral capsules: 100mg",
        ],
    ]),
    ("ANTI-INFLAMMATORY (with reconstitution details)", [
        [
            "Dexamethasone: 0.05-0.2 mg/kg q12-24h IV/IM/SC (use 3-day tapering system)",
            "WARNING: Start low, especially for cats (0.05-0.1 mg/kg)",
            "Ampoule: 8mg/2ml = 4mg/ml OR 4mg/1ml = 4mg/ml",
            "CALCULATE: Total mg needed, then ml volume",
            "Example: 5kg cat at 0.1mg/kg = 0.5mg = 0.125ml",
        ],
        [
            "Prednisolone: Anti-inflammatory 0.5-1 mg/kg q12-24h, Immunosuppressive 1-2 mg/kg PO (Predsol®, Solupred®)",
            "Oral tablets: 5mg, 10mg, 20mg",
        ],
        [
            "Meloxicam: Initial 0.2 mg/kg SC/PO, maintenance 0.1 mg/kg PO q24h (Mobic®) - joint inflammation",
            "Injectable: 5mg/ml (for initial dose ONLY)",
            "Oral suspension: 1.5mg/ml (for maintenance)",
            "WARNING: Cats - use 0.05 mg/kg after initial dose, max 3 days",
            "CALCULATE: ml volume for injection",
        ],
        [
            "Ketoprofen (Ketofen®): 1-2 mg/kg SC/IM/IV q24h - fever, pain (max 3-5 days)",
            "Ampoule: 100mg/2ml = 50mg/ml",
            "CALCULATE: Total mg needed, then ml volume",
        ],
        [
            "Paracetamol (Acetaminophen): Dog ONLY 10-15 mg/kg q8-12h PO (NEVER in cats - FATAL)",
            "WARNING: ABSOLUTELY CONTRAINDICATED IN CATS - causes fatal methemoglobinemia",
            "Oral tablets: 500mg",
        ],
    ]),
    ("ANTI-EMETIC (with reconstitution details)", [
        [
            "Metoclopramide (Primperan®): 0.2-0.5 mg/kg q8-12h IV/IM/SC - better for dogs",
            "Ampoule: 10mg/2ml = 5mg/ml",
            "CALCULATE: Total mg needed, then ml volume",
        ],
        [
            "Ondansetron (Zofran®): 0.1-0.2 mg/kg q8-12h IV/IM - better for cats, safe all ages",
            "WARNING: Common mistake is 1mg/kg - WRONG! Correct dose is 0.1-0.2 mg/kg",
            "Ampoule: 4mg/2ml = 2mg/ml or 8mg/4ml = 2mg/ml",
            "CALCULATE: Total mg needed, then ml volume",
            "Example: 5kg cat at 0.2mg/kg = 1mg total = 0.5ml",
        ],
        [
            "Domperidone (Motilium®): 0.5-1 mg/kg q8-12h PO - avoid in elderly/cardiac cases",
            "Oral suspension: 1mg/ml",
            "NOT for injectable use",
        ],
    ]),
    ("ANTACIDS", [
        [
            "Ranitidine (Ranitack®): Dog 2 mg/kg q8-12h, Cat 2.5-3.5 mg/kg q12h",
            "Injectable: 50mg/2ml = 25mg/ml (for severe cases)",
            "Oral tablets: 150mg, 300mg",
            "CALCULATE: ml volume for injection if needed",
        ],
        [
            "Famotidine (Antodine®): 0.5-1 mg/kg q12-24h",
            "Oral tablets: 20mg, 40mg",
        ],
        [
            "Omeprazole (Risek®): Dog 0.5-1.5 mg/kg q24h, Cat 0.75-1 mg/kg q24h",
            "Oral capsules: 20mg, 40mg",
        ],
    ]),
    ("ANTI-DIARRHEAL", [
        [
            "Metronidazole (Flagyl®): Dog 15-25 mg/kg q12h, Cat 8-10 mg/kg q12h - max 1 week",
            "Injectable: 500mg/100ml = 5mg/ml",
            "Oral tablets: 250mg, 500mg",
            "Oral suspension: 125mg/5ml",
        ],
        [
            "Kaolin (Kapect®): 0.5-1 ml/kg q6-8h - mild cases",
            "Oral suspension: ready to use",
        ],
        [
            "Nifuroxazide (Antinal®): 4.4 mg/kg q8h - bacterial diarrhea with fever",
            "Oral suspension: 220mg/5ml",
        ],
    ]),
    ("SUPPLEMENTS", [
        [
            "B-complex vitamins: Safe to use, water-soluble",
            "Injectable: various concentrations - use as per product",
        ],
        [
            "Calcium injection: 50-150 mg/kg (only if NOT febrile, except eclampsia)",
            "Calcium gluconate 10%: 10mg/ml",
            "CALCULATE: ml volume based on weight",
        ],
        [
            "Mineral sachets: Hydrosafe®, Hydran® - dissolve in water",
        ],
    ]),
]

_SAFETY_RULES = [
    'Do NOT include any diagnoses mentioned in the "EXCLUDED DIAGNOSES" section',
    'If a diagnostic test has ruled something out (e.g., "no obstruction on x-ray"), do NOT include that diagnosis',
    "Base all differentials ONLY on Merck Veterinary Manual and BSAVA Manuals",
    "Reference these textbooks when explaining your reasoning",
    "DOUBLE-CHECK all drug dosages - use the EXACT doses provided below",
    "Always show your calculation steps clearly",
]

_DANGEROUS_ERRORS = [
    "Ondansetron is 0.1-0.2 mg/kg, NOT 1 mg/kg",
    "Meloxicam in cats: use lower doses and max 3 days",
    "NEVER use paracetamol in cats - it is FATAL",
    "Dexamethasone: start with lower doses (0.05-0.1 mg/kg) especially in cats",
]

_CALCULATION_RULES = [
    "For injectable drugs: ALWAYS calculate the actual volume in ml based on the concentration",
    "Show calculation steps: Weight → mg needed → ml volume → number of vials",
    'Example format: "Dog 10kg needs Cefotaxime 40mg/kg = 400mg total. Using 500mg vial '
    'reconstituted to 2ml (250mg/ml): 400mg ÷ 250mg/ml = 1.6ml. Need 1 vial."',
    "For oral medications: Calculate number of tablets/capsules or ml of suspension",
    "Injectable routes preferred for vomiting/diarrhea cases",
    "NSAIDs: Use injectable forms to avoid gastric ulcers",
    "Corticosteroids: Always use 3-day tapering system",
    "Never use paracetamol in cats (TOXIC)",
    "Check liver function before azithromycin",
    "Calcium raises body temperature - avoid in febrile patients",
]

# Headings must stay in sync with the section titles the response parser
# recognises.
_OUTPUT_FORMAT = """Format your answer with exactly these four headings, in this order:

## Ranked Differential Diagnoses
One line per diagnosis, most to least likely, in the form:
NN% | Diagnosis name | Brief rationale with Merck/BSAVA reference
Use likelihoods spread across the 5-95% range; they do not need to sum to 100.

## Suggested Diagnostic Steps
Diagnostic steps based on Merck/BSAVA protocols.

## Red Flags
Red flags if present, or state that none are identified.

## Treatment Recommendations
Group treatment by category. Start each group with a line "CATEGORY: <name>"
(for example "CATEGORY: Fluid therapy"), followed by the drugs from the list
above with specific names, doses, routes and calculated volumes."""


def problem_list(case: PatientCase) -> str:
    return ", ".join(case.problems)


def excluded_list(case: PatientCase) -> str:
    return ", ".join(case.excluded)


def _render_formulary() -> str:
    blocks: list[str] = []
    for drug_class, entries in _FORMULARY:
        lines = [f"{drug_class}:"]
        for entry in entries:
            lines.append(f"- {entry[0]}")
            lines.extend(f"  • {detail}" for detail in entry[1:])
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def _numbered(items: list[str]) -> str:
    return "\n".join(f"{i}. {item}" for i, item in enumerate(items, start=1))


def build_prompt(case: PatientCase) -> str:
    """Build the full differential-diagnosis prompt for one case."""
    signalment = [
        f"Species: {case.species}",
        f"Age: {case.age}",
        f"Sex: {case.sex}",
        f"Weight: {case.weight}",
    ]
    if case.breed:
        signalment.append(f"Breed: {case.breed}")
    signalment.append(f"Problem list: {problem_list(case)}")

    exclusions = excluded_list(case)
    if exclusions:
        signalment.append(
            "\nEXCLUDED DIAGNOSES (do NOT include these - already ruled out by "
            f"diagnostics): {exclusions}"
        )

    dangerous = "\n".join(f"   - {item}" for item in _DANGEROUS_ERRORS)
    calculation = "\n".join(f"- {rule}" for rule in _CALCULATION_RULES)

    sections = [
        "You are a veterinary clinical decision support assistant specialized in "
        "small animal medicine. You MUST base your differentials ONLY on information "
        "from Merck Veterinary Manual and BSAVA (British Small Animal Veterinary "
        "Association) Manuals. Do not use any other sources.",
        "\n".join(signalment),
        "CRITICAL SAFETY INSTRUCTIONS - READ CAREFULLY:\n"
        + _numbered(_SAFETY_RULES)
        + f"\n{len(_SAFETY_RULES) + 1}. Common dangerous errors to AVOID:\n"
        + dangerous,
        "TREATMENT PROTOCOLS - USE THESE DRUGS (commonly available in Egypt):\n"
        "When recommending treatment, ALWAYS calculate both mg dose AND volume in ml/vials needed:",
        _render_formulary(),
        "IMPORTANT CALCULATION INSTRUCTIONS:\n" + calculation,
        _OUTPUT_FORMAT,
        "Be concise but thorough. Use clinical reasoning principles from these "
        "veterinary textbooks only.",
    ]
    return "\n\n".join(sections)
