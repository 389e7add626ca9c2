from mhmcmc.example.models import (GaussianModel, RandomInterceptModel, simulate_gaussian_data,
                                   simulate_random_intercept_data)
