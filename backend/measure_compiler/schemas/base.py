"""Base enums for the Universal Measure Specification and compiler outputs."""

from enum import Enum


class ConfidenceLevel(str, Enum):
    """Extraction confidence for a criterion or value set."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ReviewStatus(str, Enum):
    """Reviewer status of a population or criterion."""

    PENDING = "pending"
    APPROVED = "approved"
    NEEDS_REVISION = "needs_revision"
    FLAGGED = "flagged"


class PopulationType(str, Enum):
    """Fixed measure sub-groups."""

    INITIAL_POPULATION = "initial_population"
    DENOMINATOR = "denominator"
    DENOMINATOR_EXCLUSION = "denominator_exclusion"
    DENOMINATOR_EXCEPTION = "denominator_exception"
    NUMERATOR = "numerator"
    NUMERATOR_EXCLUSION = "numerator_exclusion"


class LogicalOperator(str, Enum):
    """Boolean operator of a logical clause."""

    AND = "AND"
    OR = "OR"
    NOT = "NOT"  # Expected to carry exactly one child


class DataElementType(str, Enum):
    """Clinical category of a data element."""

    DIAGNOSIS = "diagnosis"
    ENCOUNTER = "encounter"
    PROCEDURE = "procedure"
    OBSERVATION = "observation"
    MEDICATION = "medication"
    IMMUNIZATION = "immunization"
    DEMOGRAPHIC = "demographic"
    ASSESSMENT = "assessment"
    DEVICE = "device"
    COMMUNICATION = "communication"
    ALLERGY = "allergy"
    GOAL = "goal"


class TimingOperator(str, Enum):
    """Temporal relationship of a criterion to the measurement period."""

    DURING = "during"
    WITHIN = "within"
    BEFORE_END_OF = "before end of"
    AFTER_START_OF = "after start of"
    BEFORE_AGE = "before age"  # Measured from the patient's birth date


class TimeUnit(str, Enum):
    """Unit of a timing window."""

    DAYS = "days"
    WEEKS = "weeks"
    MONTHS = "months"
    YEARS = "years"


class Comparator(str, Enum):
    """Comparison operator for quantity requirements."""

    GTE = ">="
    GT = ">"
    LTE = "<="
    LT = "<"
    EQ = "="


class Gender(str, Enum):
    """Administrative gender constraint."""

    MALE = "male"
    FEMALE = "female"
    ALL = "all"


class OutputFormat(str, Enum):
    """Target language of generated code."""

    CQL = "cql"
    SYNAPSE_SQL = "synapse-sql"


class SqlDialect(str, Enum):
    """Supported SQL dialects."""

    SYNAPSE = "synapse"  # Azure Synapse / T-SQL


class ChangeType(str, Enum):
    """Kind of manual edit recorded on an override note."""

    LOGIC = "logic"
    TIMING = "timing"
    CODES = "codes"
    SYNTAX = "syntax"
    OTHER = "other"


class DiffChangeType(str, Enum):
    """Change classification used by the diff engine."""

    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"
    UNCHANGED = "unchanged"
