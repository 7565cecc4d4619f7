from .config import StripZipConfig
from .errors import StripZipError, StructuralError, UnsupportedFeatureError, ArchiveIOError
from .extra import purify_extra_data, STRIPPED_ID
from .types import EntryReport, PurifyReport
from .walker import ArchiveWalker, purify_archive, check_archive
from .writer import overwrite_field

__version__ = "1.0.0"
