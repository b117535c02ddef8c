"""envpolicy - Policy conformance checker for Python and R environments.

Lints a repository's conda, pip, renv, Azure DevOps pipeline and Docker
configuration against organizational governance rules, so reproducibility
and security drift is caught in review rather than on a shared VM.
"""

__version__ = "0.1.0"
__author__ = "envpolicy Contributors"
__description__ = "Policy conformance checker for Python and R environment configuration"
