"""Physical constants and residue letters for LC-MS feature calculations.

This module provides the physical constants used throughout lcmsfeatures.
All values are sourced from NIST.

Key Features
------------
- Correct PROTON_MASS (1.007276466622 Da, not hydrogen atom mass!)
- Valid residue letter range for residue-specific isotopic labels
- Separator used when identification lists are flattened to text

Sources
-------
- NIST physical constants: https://physics.nist.gov/cgi-bin/cuu/Value
"""

# =============================================================================
# Fundamental Physical Constants (NIST values)
# =============================================================================

# Proton mass (NOT hydrogen atom mass!)
# Source: NIST 2018 CODATA
# CRITICAL: Use 1.007276466622, not 1.007825 (which is H atom mass)
PROTON_MASS = 1.007276466622  # Da

# =============================================================================
# Residues
# =============================================================================

# Labeled residues must fall in this (inclusive) letter range
FIRST_RESIDUE = "A"
LAST_RESIDUE = "Y"

# Sentinel residue for labels that are not residue specific (termini, O18)
NO_RESIDUE = " "

# =============================================================================
# Text output
# =============================================================================

# Multiple peptides/proteins attached to one feature are joined with this
LIST_SEPARATOR = ";"
