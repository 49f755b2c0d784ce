import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
ROOT_DIR = Path(__file__).parent.parent
load_dotenv(ROOT_DIR / '.env')

# Marshalats backend
API_BASE_URL = os.environ.get('API_BASE_URL', 'http://localhost:8003').rstrip('/')
REQUEST_TIMEOUT = float(os.environ.get('REQUEST_TIMEOUT', '30.0'))

# JWT settings shared with the backend
SECRET_KEY = os.environ.get('SECRET_KEY', 'student_management_secret_key_2025')
ALGORITHM = os.environ.get('ALGORITHM', 'HS256')

# Save-status flashes (seconds)
IMMEDIATE_STATUS_RESET_SECONDS = float(os.environ.get('IMMEDIATE_STATUS_RESET_SECONDS', '2'))
DEFERRED_STATUS_RESET_SECONDS = float(os.environ.get('DEFERRED_STATUS_RESET_SECONDS', '3'))

# Page banners (seconds)
SUCCESS_BANNER_SECONDS = float(os.environ.get('SUCCESS_BANNER_SECONDS', '5'))
ERROR_BANNER_SECONDS = float(os.environ.get('ERROR_BANNER_SECONDS', '8'))

# Attendance pages unused for this long are closed (0 disables eviction)
SESSION_IDLE_TIMEOUT_SECONDS = float(os.environ.get('SESSION_IDLE_TIMEOUT_SECONDS', '1800'))

# Number of concurrent writes during "save all"; 1 keeps the loop sequential
BULK_SAVE_CONCURRENCY = max(1, int(os.environ.get('BULK_SAVE_CONCURRENCY', '1')))

# Time of day attached to coach attendance writes
COACH_ATTENDANCE_TIME = os.environ.get('COACH_ATTENDANCE_TIME', '10:00:00')

LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()
HOST = os.environ.get('HOST', '0.0.0.0')
PORT = int(os.environ.get('PORT', '8003'))
