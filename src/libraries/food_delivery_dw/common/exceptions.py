"""
Custom exceptions for the food delivery warehouse pipeline.
"""


class DimensionalProcessingError(Exception):
    """Base exception for the warehouse pipeline."""
    
    def __init__(self, message: str, error_code: str = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class SCDValidationError(DimensionalProcessingError):
    """Exception raised when SCD data validation fails."""
    
    def __init__(self, message: str, validation_errors: list = None):
        super().__init__(message, "SCD_VALIDATION_ERROR")
        self.validation_errors = validation_errors or []


class SCDProcessingError(DimensionalProcessingError):
    """Exception raised when SCD processing fails."""
    
    def __init__(self, message: str, processing_step: str = None):
        super().__init__(message, "SCD_PROCESSING_ERROR")
        self.processing_step = processing_step


class KeyResolutionError(DimensionalProcessingError):
    """Exception raised when key resolution fails."""
    
    def __init__(self, message: str, resolution_step: str = None):
        super().__init__(message, "KEY_RESOLUTION_ERROR")
        self.resolution_step = resolution_step


class ConfigurationError(DimensionalProcessingError):
    """Exception raised when configuration is invalid."""
    
    def __init__(self, message: str, config_field: str = None):
        super().__init__(message, "CONFIGURATION_ERROR")
        self.config_field = config_field


class TypeCastFailure(DimensionalProcessingError):
    """Raised when a field cannot be coerced to its target type and the batch policy is abort."""
    
    def __init__(self, message: str, entity: str = None, failed_count: int = 0,
                 sample: list = None):
        super().__init__(message, "TYPE_CAST_FAILURE")
        self.entity = entity
        self.failed_count = failed_count
        self.sample = sample or []


class ReferentialGap(DimensionalProcessingError):
    """Raised when a record references a natural key missing from its dimension."""
    
    def __init__(self, message: str, missing_dimensions: list = None, record_count: int = 0):
        super().__init__(message, "REFERENTIAL_GAP")
        self.missing_dimensions = missing_dimensions or []
        self.record_count = record_count


class ConcurrencyViolation(DimensionalProcessingError):
    """Raised when two runs try to transition the same dimension table at once."""
    
    def __init__(self, message: str, table_name: str = None):
        super().__init__(message, "CONCURRENCY_VIOLATION")
        self.table_name = table_name


class SchemaMismatch(DimensionalProcessingError):
    """Raised when an incoming file does not match the expected layout."""
    
    def __init__(self, message: str, file_names: list = None, failed_count: int = 0):
        super().__init__(message, "SCHEMA_MISMATCH")
        self.file_names = file_names or []
        self.failed_count = failed_count


class ChangeExtractionError(DimensionalProcessingError):
    """Exception raised when reading a change feed fails."""
    
    def __init__(self, message: str, source_table: str = None):
        super().__init__(message, "CHANGE_EXTRACTION_ERROR")
        self.source_table = source_table


class IngestionError(DimensionalProcessingError):
    """Exception raised when landing files into the stage layer fails."""
    
    def __init__(self, message: str, entity: str = None):
        super().__init__(message, "INGESTION_ERROR")
        self.entity = entity
