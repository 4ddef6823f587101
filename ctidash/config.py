# ctidash/config.py
import os

MONGODB_URI = os.getenv("MONGODB_URI", "mongodb://localhost:27017")
DB_NAME    = os.getenv("DB_NAME", "cti_dashboard")
SECRET_KEY = os.getenv("FLASK_SECRET_KEY", "dev-key")
TOKEN_MAX_AGE = int(os.getenv("TOKEN_MAX_AGE", str(60 * 60 * 24)))
ENV = os.getenv("ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

GEMINI_API_KEY  = os.getenv("GEMINI_API_KEY", "").strip()
GEMINI_MODEL    = os.getenv("GEMINI_MODEL", "gemini-1.5-flash")
GEMINI_API_BASE = os.getenv("GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1")
GEMINI_TIMEOUT  = int(os.getenv("GEMINI_TIMEOUT", "30"))

SHODAN_CVE_API  = os.getenv("SHODAN_CVE_API", "https://cvedb.shodan.io")
REQUEST_TIMEOUT = int(os.getenv("REQUEST_TIMEOUT", "10"))
CVE_FEED_LIMIT  = int(os.getenv("CVE_FEED_LIMIT", "200"))

# (max requests, window seconds)
AI_RATE_LIMIT      = (5, 15 * 60)
GENERAL_RATE_LIMIT = (100, 15 * 60)

ASSIGNABLE_ROLES = ["admin", "editor", "viewer"]
USER_STATUSES = ["active", "inactive"]
ORG_STATUSES = ["active", "inactive"]

INCIDENT_STATUSES   = ["Open", "Triaged", "In Progress", "Resolved", "Closed"]
INCIDENT_PRIORITIES = ["Low", "Medium", "High", "Critical"]
ACTIVE_STATUSES = ["Open", "Triaged", "In Progress"]

SOPHISTICATION_LEVELS = ["Unknown", "Minimal", "Intermediate", "Advanced", "Expert"]
RESOURCE_LEVELS = ["Unknown", "Individual", "Club", "Contest", "Team", "Organization", "Government"]
HIGH_RISK_SOPHISTICATION = ["Advanced", "Expert"]

NOTIFICATION_TYPES = ["password_reminder", "system", "security", "info"]
NOTIFICATION_PRIORITIES = ["low", "medium", "high"]

STATUS_COLORS = {
    "Open":        "#3b82f6",
    "Triaged":     "#a78bfa",
    "In Progress": "#fbbf24",
    "Resolved":    "#10b981",
    "Closed":      "#f87171",
}
PRIORITY_CHART_ORDER = ["Critical", "High", "Medium", "Low"]

RELEVANT_CVE_MIN_SCORE = 8.0

KNOWN_VENDORS = [
    "Microsoft", "Adobe", "Oracle", "Cisco", "Apple", "Google", "VMware",
    "Apache", "Linux", "Ubuntu", "Red Hat", "Debian", "Dell", "HP", "IBM",
    "Intel", "AMD", "NVIDIA", "Qualcomm", "Samsung", "Huawei", "Juniper",
    "Fortinet", "Palo Alto",
]
