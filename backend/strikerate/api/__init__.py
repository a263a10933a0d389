"""API router exports."""
from strikerate.api.auth import router as auth
from strikerate.api.markets import router as markets
from strikerate.api.matches import router as matches
from strikerate.api.predictions import router as predictions
from strikerate.api.users import router as users
