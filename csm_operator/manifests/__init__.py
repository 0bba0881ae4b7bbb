"""
Loading and rendering of the driver, module and client templates
"""

# Local
from .bundle import Bundle, WorkloadSet
from .loader import TemplateLoader
from .resolver import ManifestResolver
