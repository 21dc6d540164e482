# Controllers Package
