# config.py - Configuration management
from pydantic_settings import BaseSettings
from typing import Optional

class Settings(BaseSettings):
    # Model
    FACTOR_DIM: int = 10
    STEEPNESS: float = 1.0  # 1 = sigmoid, 2 = (1 + tanh) / 2
    LINK: str = "logistic"  # logistic | probit
    AREA_PAIRS: str = "observed"  # observed | all
    
    # Regularization
    LAMBDA_U: float = 0.01
    LAMBDA_V: float = 0.01
    LAMBDA_F: float = 0.01
    USE_FRIENDSHIP: bool = False
    
    # Training
    LEARNING_RATE: float = -1e-6  # negative: factor - rate * gradient ascends
    CONVERGENCE_THRESHOLD: float = 0.01
    MAX_ITERATIONS: int = 10
    TRAINING_MODE: str = "batch"  # batch | stochastic
    INSTABILITY_TOLERANCE: int = 5
    SHOW_PROGRESS: bool = False
    
    # Factor initialization
    INIT_LOW: float = 0.1
    INIT_HIGH: float = 1.0
    SEED: Optional[int] = None
    
    # Spatial grid (degrees)
    GRID_SCALE: float = 0.01
    GRID_ROUND_PLACES: int = 1
    AVERAGE_AREA_LOCATION: bool = True
    
    # Performance
    NUM_WORKERS: int = 4
    
    class Config:
        env_file = ".env"

settings = Settings()
