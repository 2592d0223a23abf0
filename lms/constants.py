"""
Leave policy constants (section 6 of the HR leave rules)
"""

# Policy 6.21.c: medical leave beyond this many days spills into EL, then special leave
MEDICAL_LEAVE_LIMIT = 14

# Policy 6.20.d: casual leave beyond this many consecutive days is charged to EL
CASUAL_LEAVE_LIMIT = 3

# Policy 6.19.c: EL balance cap; excess moves to the special leave bucket
EARNED_LEAVE_CAP = 60
SPECIAL_LEAVE_MAX = 120

# Policy 6.19: monthly EL credit
EARNED_LEAVE_MONTHLY_ACCRUAL = 2

# Medical leave longer than this needs a fitness certificate before rejoining
DUTY_RETURN_THRESHOLD_DAYS = 7

# EL days that must remain after an encashment
ENCASHMENT_MIN_REMAINING = 10

MEDICAL_EXCESS_POLICY = "Policy 6.21.c"
CASUAL_EXCESS_POLICY = "Policy 6.20.d"
EL_OVERFLOW_POLICY = "Policy 6.19.c"
